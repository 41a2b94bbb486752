import math
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from cryptofolio.config import STABLECOINS


class TxType(str, Enum):
    buy = "buy"
    sell = "sell"
    swap = "swap"
    deposit = "deposit"
    withdraw = "withdraw"

    @property
    def acquiring(self) -> bool:
        return self in (TxType.buy, TxType.swap, TxType.deposit)

    @property
    def disposing(self) -> bool:
        return self in (TxType.sell, TxType.withdraw)


HistoryAction = Literal["add", "update", "delete"]
PriceSource = Literal["api", "scraper", "auto"]


def _ticker(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().upper()
    return v or None


# ---------------- ledger ----------------
class TxIn(BaseModel):
    asset: str
    type: TxType
    quantity: float = Field(gt=0, allow_inf_nan=False)
    price_usd: Optional[float] = Field(default=None, allow_inf_nan=False)
    destination_asset: Optional[str] = None
    source_asset: Optional[str] = None
    transaction_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("asset")
    @classmethod
    def _asset(cls, v: str) -> str:
        v = _ticker(v)
        if not v:
            raise ValueError("asset must not be empty")
        return v

    @field_validator("destination_asset", "source_asset")
    @classmethod
    def _counter_asset(cls, v: Optional[str]) -> Optional[str]:
        return _ticker(v)

    @model_validator(mode="after")
    def _check_rules(self):
        if self.price_usd is None:
            if self.type == TxType.withdraw:
                self.price_usd = 0.0
            elif self.type == TxType.deposit and self.asset in STABLECOINS:
                self.price_usd = 1.0
            else:
                raise ValueError(f"price_usd is required for {self.type.value} of {self.asset}")
        elif self.price_usd < 0 or (self.price_usd == 0 and self.type != TxType.withdraw):
            raise ValueError("price_usd must be positive")

        if self.destination_asset and self.type != TxType.sell:
            raise ValueError("destination_asset is only allowed on sell")
        if self.source_asset and self.type != TxType.swap:
            raise ValueError("source_asset is only allowed on swap")
        if self.asset in (self.destination_asset, self.source_asset):
            raise ValueError("counter asset must differ from asset")
        # the paired leg is booked at 1.0 per unit
        for field in ("destination_asset", "source_asset"):
            counter = getattr(self, field)
            if counter and counter not in STABLECOINS:
                raise ValueError(f"{field} must be a stablecoin")
        if self.notes is not None:
            self.notes = self.notes.strip() or None
        return self


class TxUpdate(BaseModel):
    asset: Optional[str] = None
    type: Optional[TxType] = None
    quantity: Optional[float] = None
    price_usd: Optional[float] = None
    destination_asset: Optional[str] = None
    source_asset: Optional[str] = None
    transaction_date: Optional[date] = None
    notes: Optional[str] = None


class Transaction(BaseModel):
    id: str
    asset: str
    type: TxType
    quantity: float
    price_usd: Optional[float] = None
    destination_asset: Optional[str] = None
    source_asset: Optional[str] = None
    transaction_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def effective_date(self) -> date:
        return self.transaction_date or self.created_at.date()


EDITABLE_FIELDS = tuple(TxUpdate.model_fields)


def merge_update(tx: Transaction, upd: TxUpdate) -> TxIn:
    """Apply the fields set on `upd` over `tx` and re-validate. Raises ValueError."""
    data = {k: getattr(tx, k) for k in EDITABLE_FIELDS}
    data.update(upd.model_dump(exclude_unset=True))
    return TxIn(**data)


class HistoryEntry(BaseModel):
    id: int
    timestamp: datetime
    action: HistoryAction
    transaction_id: str
    asset: str
    type: TxType
    quantity: float
    price_usd: Optional[float] = None
    destination_asset: Optional[str] = None
    source_asset: Optional[str] = None
    transaction_date: Optional[date] = None
    notes: Optional[str] = None
    previous: Optional[Dict[str, Any]] = None


class HistoryStats(BaseModel):
    total_actions: int = 0
    added: int = 0
    updated: int = 0
    deleted: int = 0
    unique_assets: int = 0
    first_action_at: Optional[datetime] = None
    last_action_at: Optional[datetime] = None
    active_transactions: int = 0


# ---------------- prices ----------------
class AssetPrice(BaseModel):
    symbol: str
    name: str
    current_price: float
    price_change_percentage_24h: float = 0.0
    last_updated: str
    image: Optional[str] = None


class PriceResult(BaseModel):
    prices: Dict[str, AssetPrice] = Field(default_factory=dict)
    source: Literal["api", "scraper", "cache"]
    message: Optional[str] = None


class PriceSourceIn(BaseModel):
    mode: PriceSource


# ---------------- derived views ----------------
class Position(BaseModel):
    asset: str
    total_quantity: float
    average_buy_price: float
    total_investment: float
    transactions: List[Transaction] = Field(default_factory=list)
    earliest_date: Optional[date] = None
    latest_date: Optional[date] = None
    notes: str = ""


class PositionWithMetrics(Position):
    current_price: float = 0.0
    value: float = 0.0
    pnl: float = 0.0
    pnl_percentage: float = 0.0
    asset_info: Optional[AssetPrice] = None


class PortfolioMetrics(BaseModel):
    total_value: float = 0.0
    total_cost: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percentage: float = 0.0
    change_24h: float = 0.0
    change_24h_percentage: float = 0.0


class AllocationRow(BaseModel):
    asset: str
    quantity: float
    value: float
    pnl: float
    percentage: float


class PortfolioOut(BaseModel):
    rows: List[PositionWithMetrics]
    totals: PortfolioMetrics
    allocation: List[AllocationRow]
    price_source: Optional[str] = None
    message: Optional[str] = None


def finite(x: Optional[float]) -> float:
    """Coerce None/NaN/inf to 0.0."""
    if x is None:
        return 0.0
    try:
        x = float(x)
    except (TypeError, ValueError):
        return 0.0
    return x if math.isfinite(x) else 0.0
