"""
Mill Stock Movement Models
SQLAlchemy models for the movement ledger and purchase rates
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, Date, DateTime, Text,
    ForeignKey, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from millstock.core.database import Base


class MovementEventRec(Base):
    """
    Movement Event - Ledger Entry

    Append-only record of paddy entering, moving within, or leaving the
    mill. Only admin-approved, non-deleted rows count towards stock.
    """
    __tablename__ = "movement_events"
    __table_args__ = (
        CheckConstraint(
            "kind IN ('purchase', 'shifting', 'production-shifting', 'loose', 'sale', 'palti')",
            name='chk_movement_kind'
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'admin-approved', 'rejected')",
            name='chk_movement_status'
        ),
        CheckConstraint('bags > 0', name='chk_movement_bags'),
        CheckConstraint('shortage_bags >= 0', name='chk_movement_shortage'),
        Index('idx_movement_date_status', 'event_date', 'status'),
        Index('idx_movement_source', 'from_kunchinittu_id', 'from_warehouse_id'),
        Index('idx_movement_destination', 'to_kunchinittu_id', 'to_warehouse_id'),
        Index('idx_movement_outturn', 'outturn_id'),
    )

    event_id = Column(Integer, primary_key=True, autoincrement=True)
    sl_no = Column(String(20), nullable=False, unique=True, doc="Serial number, e.g. A00001")
    event_date = Column(Date, nullable=False, doc="Business date of the movement")
    kind = Column(String(30), nullable=False, doc="Movement kind")

    variety = Column(String(100), nullable=True, doc="Variety as entered")
    bags = Column(Integer, nullable=False)
    gross_weight = Column(Numeric(12, 2), nullable=False, default=0)
    tare_weight = Column(Numeric(12, 2), nullable=False, default=0)
    net_weight = Column(Numeric(12, 2), nullable=False, default=0, doc="Gross minus tare, kg")
    shortage_bags = Column(Integer, nullable=False, default=0, doc="Bags lost in a palti")

    # Source location
    from_kunchinittu_id = Column(Integer, ForeignKey("kunchinittus.kunchinittu_id"), nullable=True)
    from_warehouse_id = Column(Integer, ForeignKey("warehouses.warehouse_id"), nullable=True)

    # Destination location
    to_kunchinittu_id = Column(Integer, ForeignKey("kunchinittus.kunchinittu_id"), nullable=True)
    to_warehouse_id = Column(Integer, ForeignKey("warehouses.warehouse_id"), nullable=True)

    # Destination outturn (production-shifting) or linked outturn (purchase)
    outturn_id = Column(Integer, ForeignKey("outturns.outturn_id"), nullable=True)

    # Trip details
    broker = Column(String(100), nullable=True)
    from_location = Column(String(200), nullable=True)
    lorry_number = Column(String(20), nullable=True)
    wb_no = Column(String(20), nullable=True, doc="Weighbridge slip number")
    remarks = Column(Text, nullable=True)

    # Approval workflow
    status = Column(String(20), nullable=False, default='pending')
    created_by = Column(Integer, nullable=False)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    admin_approved_by = Column(Integer, nullable=True)
    admin_approved_at = Column(DateTime(timezone=True), nullable=True)

    # Soft delete tombstone
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    purchase_rate = relationship("PurchaseRateRec", back_populates="event", uselist=False)

    def __repr__(self):
        return f"<MovementEventRec(sl_no='{self.sl_no}', kind='{self.kind}', bags={self.bags})>"


class PurchaseRateRec(Base):
    """
    Purchase Rate - Priced Purchase

    Price build-up of one purchase: base rate with sute deduction, hamali
    and other adjustments, and the resulting amount and 75 kg average rate.
    """
    __tablename__ = "purchase_rates"
    __table_args__ = (
        CheckConstraint("rate_type IN ('CDL', 'CDWB', 'MDL', 'MDWB')", name='chk_rate_type'),
        CheckConstraint(
            "sute_calculation_method IN ('per_bag', 'per_quintal')",
            name='chk_sute_method'
        ),
        CheckConstraint(
            "base_rate_calculation_method IN ('per_bag', 'per_quintal')",
            name='chk_base_rate_method'
        ),
    )

    rate_id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("movement_events.event_id"), nullable=False, unique=True)

    sute = Column(Numeric(10, 2), nullable=False, default=0)
    sute_calculation_method = Column(String(20), nullable=False, default='per_bag')
    base_rate = Column(Numeric(10, 2), nullable=False)
    rate_type = Column(String(10), nullable=False)
    base_rate_calculation_method = Column(String(20), nullable=False, default='per_bag')
    h = Column(Numeric(10, 2), nullable=False, default=0, doc="Hamali per bag, may be negative")
    b = Column(Numeric(10, 2), nullable=False, default=0)
    b_calculation_method = Column(String(20), nullable=False, default='per_bag')
    lf = Column(Numeric(10, 2), nullable=False, default=0)
    lf_calculation_method = Column(String(20), nullable=False, default='per_bag')
    egb = Column(Numeric(10, 2), nullable=False, default=0)

    amount_formula = Column(Text, nullable=False, default='')
    total_amount = Column(Numeric(14, 2), nullable=False)
    average_rate = Column(Numeric(10, 2), nullable=False)

    created_by = Column(Integer, nullable=False)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    event = relationship("MovementEventRec", back_populates="purchase_rate")

    def __repr__(self):
        return f"<PurchaseRateRec(event_id={self.event_id}, total={self.total_amount})>"
