"""Pydantic models matching the scope payloads exchanged with the frontend"""
import math
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def new_id(prefix: str) -> str:
    """Generate a short random identifier such as ``supp-1a2b3c4d``"""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def parse_money(value: Any) -> float:
    """Parse a monetary amount, raising ValueError for anything not a non-negative number.

    Accepts numbers and currency strings such as "$2,500.00".
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid monetary amount: {value!r}")
    if isinstance(value, str):
        cleaned = value.strip().replace("$", "").replace(",", "").strip()
        if not cleaned:
            raise ValueError("Empty monetary amount")
        try:
            amount = float(cleaned)
        except ValueError:
            raise ValueError(f"Invalid monetary amount: {value!r}")
    elif isinstance(value, (int, float)):
        amount = float(value)
    else:
        raise ValueError(f"Invalid monetary amount: {value!r}")

    if not math.isfinite(amount) or amount < 0:
        raise ValueError(f"Monetary amount must be a non-negative number: {value!r}")
    return amount


def coerce_money(value: Any) -> float:
    """Lenient variant of parse_money for user-entered amounts: invalid input becomes 0"""
    try:
        return parse_money(value)
    except ValueError:
        return 0.0


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Selection(str, Enum):
    ALL = "all"
    NONE = "none"
    PARTIAL = "partial"


class LineItem(CamelModel):
    id: str = Field(default_factory=lambda: new_id("item"))
    quantity: str = ""
    description: str = ""
    rcv: float
    acv: Optional[float] = None
    checked: bool = True
    notes: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _ensure_id(cls, value):
        return _text(value) or new_id("item")

    @field_validator("quantity", "description", "notes", mode="before")
    @classmethod
    def _as_text(cls, value):
        return _text(value)

    @field_validator("rcv", mode="before")
    @classmethod
    def _parse_rcv(cls, value):
        return parse_money(value)

    @field_validator("acv", mode="before")
    @classmethod
    def _parse_acv(cls, value):
        if value is None or value == "":
            return None
        return parse_money(value)


class SupplementItem(CamelModel):
    id: str = Field(default_factory=lambda: new_id("supp"))
    title: str = ""
    quantity: str = ""
    amount: float = 0.0

    @field_validator("id", mode="before")
    @classmethod
    def _ensure_id(cls, value):
        return _text(value) or new_id("supp")

    @field_validator("title", "quantity", mode="before")
    @classmethod
    def _as_text(cls, value):
        return _text(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return coerce_money(value)


class Trade(CamelModel):
    id: str = Field(default_factory=lambda: new_id("trade"))
    name: str
    line_items: List[LineItem] = Field(default_factory=list)
    supplements: List[SupplementItem] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _inherit_checked(cls, data):
        # Items that omit "checked" follow the trade-level flag sent by the extractor
        if not isinstance(data, dict) or not isinstance(data.get("checked"), bool):
            return data
        items = data.get("lineItems", data.get("line_items"))
        if not isinstance(items, list):
            return data
        inherited = []
        for item in items:
            if isinstance(item, dict) and "checked" not in item:
                item = {**item, "checked": data["checked"]}
            inherited.append(item)
        key = "lineItems" if "lineItems" in data else "line_items"
        return {**data, key: inherited}

    @field_validator("id", mode="before")
    @classmethod
    def _ensure_id(cls, value):
        return _text(value) or new_id("trade")

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value):
        name = _text(value).strip()
        if not name:
            raise ValueError("Trade name is required")
        return name

    @model_validator(mode="after")
    def _unique_child_ids(self):
        item_ids = [item.id for item in self.line_items]
        if len(item_ids) != len(set(item_ids)):
            raise ValueError(f"Duplicate line item id in trade {self.id!r}")
        supp_ids = [supp.id for supp in self.supplements]
        if len(supp_ids) != len(set(supp_ids)):
            raise ValueError(f"Duplicate supplement id in trade {self.id!r}")
        return self

    @computed_field
    @property
    def selection(self) -> Selection:
        """Derived from the line items; never stored"""
        checked = sum(1 for item in self.line_items if item.checked)
        if not self.line_items or checked == 0:
            return Selection.NONE
        if checked == len(self.line_items):
            return Selection.ALL
        return Selection.PARTIAL

    @computed_field
    @property
    def checked(self) -> bool:
        return self.selection == Selection.ALL

    def checked_items(self) -> List[LineItem]:
        return [item for item in self.line_items if item.checked]

    def excluded_items(self) -> List[LineItem]:
        return [item for item in self.line_items if not item.checked]


class Signature(CamelModel):
    contractor_name: str = ""
    homeowner_name: str = ""
    homeowner_email: str = ""
    signature_date: str = ""


class ClaimAdjuster(CamelModel):
    name: str = ""
    email: str = ""


class ScopeState(CamelModel):
    """Root aggregate for one claim session"""

    trades: List[Trade] = Field(default_factory=list)
    deductible: float = 0.0
    signature: Optional[Signature] = None
    work_not_doing: Optional[str] = None
    claim_number: Optional[str] = None
    claim_adjuster: Optional[ClaimAdjuster] = None

    @field_validator("deductible", mode="before")
    @classmethod
    def _coerce_deductible(cls, value):
        return coerce_money(value)

    @model_validator(mode="after")
    def _unique_trade_ids(self):
        trade_ids = [trade.id for trade in self.trades]
        if len(trade_ids) != len(set(trade_ids)):
            raise ValueError("Duplicate trade id in session")
        return self


class TradeTotals(CamelModel):
    trade_id: str
    name: str
    rcv: float
    acv: float
    supplements: float


class Totals(CamelModel):
    trades: List[TradeTotals] = Field(default_factory=list)
    total_rcv: float = 0.0
    total_acv: float = 0.0
    total_supplements: float = 0.0
    depreciation: float = 0.0
    deductible: float = 0.0
    insurance_will_pay: float = 0.0
    homeowner_responsibility: float = 0.0


class TradePartner(CamelModel):
    id: str
    name: str
    rating: float = 0.0
    synopsis: str = ""
    logo: str = ""
    keywords: List[str] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value):
        seen = []
        for keyword in value or []:
            keyword = _text(keyword).strip().lower()
            if keyword and keyword not in seen:
                seen.append(keyword)
        return seen


class ExcludedItem(CamelModel):
    trade_id: str
    trade: str
    id: str
    quantity: str
    description: str


class EmailAttachment(CamelModel):
    filename: str
    content: str
    content_type: str


class EmailRequest(CamelModel):
    to: List[str] = Field(default_factory=list)
    subject: str = ""
    html: str = ""
    attachments: List[EmailAttachment] = Field(default_factory=list)


# Request bodies

class NotesUpdate(CamelModel):
    notes: str = ""


class SupplementUpdate(CamelModel):
    field: str
    value: Any = None


class DeductibleUpdate(CamelModel):
    amount: Any = 0


class DetailsUpdate(CamelModel):
    signature: Optional[Signature] = None
    claim_number: Optional[str] = None
    claim_adjuster: Optional[ClaimAdjuster] = None
    work_not_doing: Optional[str] = None


class ShareRequest(CamelModel):
    partner_ids: List[str] = Field(default_factory=list)
