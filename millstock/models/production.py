"""
Mill Stock Production Models
"""
from sqlalchemy import (
    Column, String, Integer, Numeric, Date, DateTime,
    ForeignKey, CheckConstraint
)
from sqlalchemy.sql import func
from millstock.core.database import Base


class RiceProductionRec(Base):
    """Rice production from an outturn; deducts paddy bags once approved"""
    __tablename__ = "rice_productions"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved')", name='chk_production_status'),
        CheckConstraint('quantity_quintals > 0', name='chk_production_quantity'),
    )

    production_id = Column(Integer, primary_key=True, autoincrement=True)
    outturn_id = Column(Integer, ForeignKey("outturns.outturn_id"), nullable=False)
    production_date = Column(Date, nullable=False)
    product_type = Column(String(50), nullable=False, doc="Rice, Broken, Bran, ...")
    quantity_quintals = Column(Numeric(10, 2), nullable=False)
    paddy_bags_deducted = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default='pending')
    created_by = Column(Integer, nullable=False)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp())

    def __repr__(self):
        return f"<RiceProductionRec(outturn_id={self.outturn_id}, product='{self.product_type}')>"
