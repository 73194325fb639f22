"""Stock Ledger Schemas"""

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal

from millstock.services.ledger.balance_engine import BalanceEntry, OpeningBalance
from millstock.services.ledger.events import (
    ApprovalState, MovementEvent, MovementKind, OutturnLocation, WarehouseLocation
)
from millstock.services.ledger.purchase_rates import PurchaseRateInput


class LocationRef(BaseModel):
    kunchinittu_id: int
    warehouse_id: int

    def to_location(self) -> WarehouseLocation:
        return WarehouseLocation(self.kunchinittu_id, self.warehouse_id)


# Movement Schemas
class MovementCreate(BaseModel):
    kind: MovementKind
    event_date: date
    variety: Optional[str] = Field(None, max_length=100)
    bags: int
    gross_weight: Optional[Decimal] = None
    tare_weight: Optional[Decimal] = None
    net_weight: Optional[Decimal] = None
    shortage_bags: int = 0
    source: Optional[LocationRef] = None
    destination: Optional[LocationRef] = None
    outturn_id: Optional[int] = None
    broker: Optional[str] = Field(None, max_length=100)
    from_location: Optional[str] = Field(None, max_length=200)
    lorry_number: Optional[str] = Field(None, max_length=20)
    wb_no: Optional[str] = Field(None, max_length=20)
    remarks: Optional[str] = None

    @model_validator(mode="after")
    def derive_net_weight(self):
        """Net weight is gross minus tare; a net weight sent with the gross must agree with it"""
        if self.gross_weight is None:
            return self
        derived = self.gross_weight - (self.tare_weight or Decimal("0"))
        if self.net_weight is None:
            self.net_weight = derived
        elif self.net_weight != derived:
            raise ValueError(
                f"net_weight {self.net_weight} does not match gross_weight - tare_weight ({derived})"
            )
        return self

    def to_event(self) -> MovementEvent:
        return MovementEvent(
            kind=self.kind,
            event_date=self.event_date,
            variety=self.variety or "",
            bags=self.bags,
            net_weight=self.net_weight or Decimal("0"),
            source=self.source.to_location() if self.source else None,
            destination=self.destination.to_location() if self.destination else None,
            outturn_id=self.outturn_id,
            shortage_bags=self.shortage_bags,
        )

    def details(self) -> dict:
        return self.model_dump(
            include={"gross_weight", "tare_weight", "broker", "from_location",
                     "lorry_number", "wb_no", "remarks"},
            exclude_none=True,
        )


class MovementCreated(BaseModel):
    event_id: int
    sl_no: str
    status: ApprovalState


class Movement(BaseModel):
    event_id: int
    sl_no: str
    event_date: date
    kind: MovementKind
    variety: Optional[str] = None
    bags: int
    gross_weight: Decimal
    tare_weight: Decimal
    net_weight: Decimal
    shortage_bags: int
    from_kunchinittu_id: Optional[int] = None
    from_warehouse_id: Optional[int] = None
    to_kunchinittu_id: Optional[int] = None
    to_warehouse_id: Optional[int] = None
    outturn_id: Optional[int] = None
    broker: Optional[str] = None
    lorry_number: Optional[str] = None
    wb_no: Optional[str] = None
    remarks: Optional[str] = None
    status: ApprovalState
    created_by: int
    approved_by: Optional[int] = None
    admin_approved_by: Optional[int] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MovementListResponse(BaseModel):
    movements: List[Movement]
    total: int
    skip: int
    limit: int


class RejectRequest(BaseModel):
    remarks: Optional[str] = None


# Balance Schemas
class BalanceLine(BaseModel):
    variety: str
    kunchinittu_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    outturn_id: Optional[int] = None
    bags: int
    net_weight: Decimal

    @classmethod
    def from_entry(cls, entry: BalanceEntry) -> "BalanceLine":
        location = entry.location
        if isinstance(location, OutturnLocation):
            return cls(variety=entry.variety, outturn_id=location.outturn_id,
                       bags=entry.bags, net_weight=entry.net_weight)
        return cls(
            variety=entry.variety,
            kunchinittu_id=location.kunchinittu_id,
            warehouse_id=location.warehouse_id,
            bags=entry.bags,
            net_weight=entry.net_weight,
        )


class OpeningBalanceResponse(BaseModel):
    before_date: date
    variety: Optional[str] = None
    warehouse_balances: List[BalanceLine]
    production_balances: List[BalanceLine]
    total_bags: int

    @classmethod
    def from_balance(cls, balance: OpeningBalance, variety: Optional[str] = None) -> "OpeningBalanceResponse":
        def lines(entries):
            ordered = sorted(entries, key=lambda e: (e.variety, str(e.location)))
            return [BalanceLine.from_entry(e) for e in ordered]

        return cls(
            before_date=balance.cutoff,
            variety=variety,
            warehouse_balances=lines(balance.warehouse_balances.values()),
            production_balances=lines(balance.production_balances.values()),
            total_bags=balance.total_bags(),
        )


class VarietyStockResponse(BaseModel):
    variety: str
    locations: List[BalanceLine]
    total_bags: int


class KunchinittuBalanceResponse(BaseModel):
    kunchinittu_id: int
    on_date: date
    bags: int
    net_weight: Decimal
    is_manual: bool
    source: str


class OpeningBalanceSet(BaseModel):
    on_date: date
    bags: int = Field(..., ge=0)
    net_weight: Decimal = Field(..., ge=0)
    remarks: Optional[str] = None


class OpeningBalanceRecord(BaseModel):
    opening_balance_id: int
    kunchinittu_id: int
    balance_date: date
    opening_bags: int
    opening_net_weight: Decimal
    is_manual: bool
    remarks: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# Outturn Schemas
class ProductionCreate(BaseModel):
    production_date: date
    product_type: str = Field(..., min_length=1, max_length=50)
    quantity_quintals: Decimal = Field(..., gt=0)


class Production(BaseModel):
    production_id: int
    outturn_id: int
    production_date: date
    product_type: str
    quantity_quintals: Decimal
    paddy_bags_deducted: int
    status: str

    model_config = ConfigDict(from_attributes=True)


class ClearOutturnRequest(BaseModel):
    clear_date: Optional[date] = None


class Outturn(BaseModel):
    outturn_id: int
    code: str
    allotted_variety: str
    outturn_type: str
    is_cleared: bool
    cleared_at: Optional[datetime] = None
    remaining_bags: Optional[int] = None
    average_rate: Decimal

    model_config = ConfigDict(from_attributes=True)


# Rate Schemas
class RateResponse(BaseModel):
    rate: Decimal
    last_calculated_at: Optional[datetime] = None


class PurchaseRateRequest(BaseModel):
    base_rate: Decimal = Field(..., ge=0)
    rate_type: str
    sute: Decimal = Decimal("0")
    sute_calculation_method: str = "per_bag"
    base_rate_calculation_method: str = "per_bag"
    h: Decimal = Decimal("0")
    b: Decimal = Decimal("0")
    b_calculation_method: str = "per_bag"
    lf: Decimal = Decimal("0")
    lf_calculation_method: str = "per_bag"
    egb: Decimal = Decimal("0")

    @field_validator("rate_type")
    @classmethod
    def upper_rate_type(cls, v: str) -> str:
        return v.strip().upper()

    def to_input(self) -> PurchaseRateInput:
        return PurchaseRateInput(**self.model_dump())


class PurchaseRate(BaseModel):
    rate_id: int
    event_id: int
    base_rate: Decimal
    rate_type: str
    amount_formula: str
    total_amount: Decimal
    average_rate: Decimal

    model_config = ConfigDict(from_attributes=True)
