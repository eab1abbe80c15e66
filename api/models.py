"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ============== Token List Models ==============

class TokenRequest(BaseModel):
    """Token to add to a list, by ticker or by pool id."""
    ticker: Optional[str] = Field(default=None, description="Ticker known to the registry")
    pool_id: Optional[str] = Field(default=None, description="Pool LP public key")


class TokenEntry(BaseModel):
    """One token list member."""
    pool_id: str
    ticker: Optional[str] = None
    name: Optional[str] = None


class TokenListResponse(BaseModel):
    """Members of a token list."""
    list_name: str
    tokens: List[TokenEntry]
    count: int


class TokenChangeResponse(BaseModel):
    """Outcome of adding or removing a token."""
    list_name: str
    pool_id: str
    ticker: Optional[str] = None
    status: str = Field(..., description="added, already present or removed")


# ============== Flow Models ==============

class DailyFlowModel(BaseModel):
    """Buy/sell counters for one day."""
    date: str
    buy_count: int
    sell_count: int
    buy_value_btc: float
    sell_value_btc: float


class FlowReportResponse(BaseModel):
    """Rendered flow report plus the underlying counters."""
    ticker: str
    date: str
    report: str
    flow: DailyFlowModel


# ============== Holder Models ==============

class TransitionModel(BaseModel):
    """One classified balance change."""
    address: str
    action: str
    previous: float
    current: float


class SweepResponse(BaseModel):
    """Result of a holder sweep."""
    ticker: str
    skipped: bool
    checked: int
    failed: int
    transitions: List[TransitionModel] = []


class HoldersResponse(BaseModel):
    """Tracked holders of a ticker."""
    ticker: str
    count: int
    last_sweep_date: str = ""
    holders: Dict[str, float]


class HolderReportEntryModel(BaseModel):
    """One address in a holders report."""
    address: str
    action: str
    changes: int
    value: float
    balance: float
    share: Optional[float] = Field(default=None, description="Percent of total supply")
    first_buy: Optional[str] = None
    username: Optional[str] = None
    spark_address: str = ""


class HoldersReportResponse(BaseModel):
    """Rendered holders report for one date plus its entries."""
    ticker: str
    date: str
    report: str
    entries: List[HolderReportEntryModel] = []


# ============== Stats Models ==============

class HealthResponse(BaseModel):
    """Service health."""
    status: str
    issues: List[str] = []


class StatsResponse(BaseModel):
    """Metrics summary and component statistics."""
    summary: Dict[str, Any]
    components: Dict[str, Any] = {}
    metrics: Dict[str, Any] = {}
