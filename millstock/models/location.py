"""
Mill Stock Location Models
SQLAlchemy models for warehouses, kunchinittus, varieties and outturns
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Boolean,
    ForeignKey, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from millstock.core.database import Base


class WarehouseRec(Base):
    """Warehouse - physical godown holding kunchinittus"""
    __tablename__ = "warehouses"

    warehouse_id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=False, unique=True, doc="Warehouse code")
    name = Column(String(100), nullable=False, doc="Warehouse name")
    location = Column(String(200), default='', doc="Address or site")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    def __repr__(self):
        return f"<WarehouseRec(code='{self.code}', name='{self.name}')>"


class VarietyRec(Base):
    """Paddy variety master"""
    __tablename__ = "varieties"

    variety_id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True, doc="Variety name, e.g. IR64")
    code = Column(String(20), default='', doc="Short code")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    def __repr__(self):
        return f"<VarietyRec(name='{self.name}')>"


class KunchinittuRec(Base):
    """
    Kunchinittu - Stacking Bay

    A named stack inside a warehouse. It may be allotted to one variety,
    and carries the average purchase rate of the stock it holds.
    """
    __tablename__ = "kunchinittus"
    __table_args__ = (
        CheckConstraint('average_rate >= 0', name='chk_kunchinittu_rate'),
    )

    kunchinittu_id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=False, unique=True, doc="Kunchinittu code")
    name = Column(String(100), nullable=False, doc="Kunchinittu name")
    warehouse_id = Column(Integer, ForeignKey("warehouses.warehouse_id"), nullable=True,
                          doc="Home warehouse")
    variety_id = Column(Integer, ForeignKey("varieties.variety_id"), nullable=True,
                        doc="Allotted variety")

    # Rate projection
    average_rate = Column(Numeric(10, 2), nullable=False, default=0, doc="Average rate per 75 kg")
    last_rate_calculation = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())

    warehouse = relationship("WarehouseRec")
    variety = relationship("VarietyRec")

    @property
    def allotted_variety(self):
        return self.variety.name if self.variety else None

    def __repr__(self):
        return f"<KunchinittuRec(code='{self.code}', rate={self.average_rate})>"


class OutturnRec(Base):
    """
    Outturn - Production Batch

    Receives paddy through production-shifting or direct purchase and is
    consumed by rice production until it is cleared.
    """
    __tablename__ = "outturns"
    __table_args__ = (
        CheckConstraint("outturn_type IN ('Raw', 'Steam')", name='chk_outturn_type'),
        CheckConstraint('average_rate >= 0', name='chk_outturn_rate'),
    )

    outturn_id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(20), nullable=False, unique=True, doc="Outturn code")
    allotted_variety = Column(String(100), nullable=False, doc="Paddy variety processed")
    outturn_type = Column(String(10), nullable=False, default='Raw', doc="Raw or Steam")

    # Clearing snapshot
    is_cleared = Column(Boolean, nullable=False, default=False)
    cleared_at = Column(DateTime(timezone=True), nullable=True)
    cleared_by = Column(Integer, nullable=True)
    remaining_bags = Column(Integer, nullable=True, doc="Bags left at clearing time")

    # Rate projection
    average_rate = Column(Numeric(10, 2), nullable=False, default=0)
    last_rate_calculation = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    def __repr__(self):
        return f"<OutturnRec(code='{self.code}', variety='{self.allotted_variety}')>"
