"""
Mill Stock Ledger Models
Manual opening balances and the balance audit trail
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, Date, DateTime, Text, Boolean, JSON,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from millstock.core.database import Base


class OpeningBalanceRec(Base):
    """Manually entered opening balance of a kunchinittu on a date"""
    __tablename__ = "opening_balances"
    __table_args__ = (
        UniqueConstraint('kunchinittu_id', 'balance_date', name='uq_opening_balance_date'),
    )

    opening_balance_id = Column(Integer, primary_key=True, autoincrement=True)
    kunchinittu_id = Column(Integer, ForeignKey("kunchinittus.kunchinittu_id"), nullable=False)
    balance_date = Column(Date, nullable=False)
    opening_bags = Column(Integer, nullable=False, default=0)
    opening_net_weight = Column(Numeric(12, 2), nullable=False, default=0)
    is_manual = Column(Boolean, nullable=False, default=True)
    remarks = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=False)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(),
                        onupdate=func.current_timestamp())


class BalanceAuditTrailRec(Base):
    """
    Balance Audit Trail

    Records rate transfers and manual balance changes with before/after values.
    """
    __tablename__ = "balance_audit_trails"
    __table_args__ = (
        Index('idx_balance_audit_entity', 'entity_type', 'entity_id'),
    )

    audit_id = Column(Integer, primary_key=True, autoincrement=True)
    action_type = Column(String(50), nullable=False, doc="rate_transfer, opening_balance_set, ...")
    entity_type = Column(String(50), nullable=False, doc="kunchinittu or outturn")
    entity_id = Column(Integer, nullable=False)
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    performed_by = Column(Integer, nullable=False)
    performed_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    @classmethod
    def record(cls, db, action_type, entity_type, entity_id, performed_by,
               previous_value=None, new_value=None, details=None, description=None):
        """Add an audit row to the session without committing"""
        entry = cls(
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            previous_value=previous_value,
            new_value=new_value,
            details=details,
            description=description,
            performed_by=performed_by,
        )
        db.add(entry)
        return entry
