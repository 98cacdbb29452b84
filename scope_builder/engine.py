"""Scope aggregation engine.

Owns the mutable checklist of trades, line items and supplements for one
claim session and derives every total from scratch on demand. The engine
works on an explicit ScopeState handed to it by the caller; loading and
saving that state is the persistence layer's job.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import ValidationError

from .errors import ErrorCode, ExtractionError, InputError, NotFoundError
from .models import (
    ClaimAdjuster,
    LineItem,
    ScopeState,
    Selection,
    Signature,
    SupplementItem,
    Totals,
    Trade,
    TradeTotals,
    coerce_money,
    new_id,
)

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
SUPPLEMENT_FIELDS = ("title", "quantity", "amount")


def _dec(value: Optional[float]) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def validate_trades_payload(payload: Any) -> List[Trade]:
    """Validate an extraction payload and return the parsed trades.

    Accepts either the full response ``{"trades": [...]}`` or the bare list.
    Raises ExtractionError(MALFORMED_RESPONSE) when the shape is wrong.
    """
    if isinstance(payload, dict):
        if "error" in payload and "trades" not in payload:
            raise ExtractionError(
                f"Extraction service returned an error: {payload['error']}",
                code=ErrorCode.LLM_ERROR,
            )
        payload = payload.get("trades")

    if not isinstance(payload, list):
        raise ExtractionError(
            "Extraction response is missing a 'trades' list",
            code=ErrorCode.MALFORMED_RESPONSE,
        )

    try:
        # Validating through ScopeState also enforces unique trade ids
        return ScopeState.model_validate({"trades": payload}).trades
    except ValidationError as e:
        raise ExtractionError(
            "Extraction response contains malformed trades",
            code=ErrorCode.MALFORMED_RESPONSE,
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        )


class ScopeEngine:
    """Operations over one session's ScopeState"""

    def __init__(self, state: Optional[ScopeState] = None):
        self.state = state if state is not None else ScopeState()

    # Lookups

    def get_trade(self, trade_id: str) -> Trade:
        for trade in self.state.trades:
            if trade.id == trade_id:
                return trade
        logger.warning("trade_not_found", trade_id=trade_id)
        raise NotFoundError(ErrorCode.TRADE_NOT_FOUND, f"Trade not found: {trade_id}", trade_id=trade_id)

    def get_line_item(self, trade_id: str, item_id: str) -> LineItem:
        trade = self.get_trade(trade_id)
        for item in trade.line_items:
            if item.id == item_id:
                return item
        logger.warning("line_item_not_found", trade_id=trade_id, item_id=item_id)
        raise NotFoundError(
            ErrorCode.LINE_ITEM_NOT_FOUND,
            f"Line item not found: {item_id}",
            trade_id=trade_id,
            item_id=item_id,
        )

    def get_supplement(self, trade_id: str, supp_id: str) -> SupplementItem:
        trade = self.get_trade(trade_id)
        for supp in trade.supplements:
            if supp.id == supp_id:
                return supp
        logger.warning("supplement_not_found", trade_id=trade_id, supp_id=supp_id)
        raise NotFoundError(
            ErrorCode.SUPPLEMENT_NOT_FOUND,
            f"Supplement not found: {supp_id}",
            trade_id=trade_id,
            supp_id=supp_id,
        )

    # Mutations

    def load_from_extraction(self, trades_payload: Any) -> List[Trade]:
        """Replace all trades with a validated extraction payload.

        The previous trades are kept if validation fails.
        """
        trades = validate_trades_payload(trades_payload)
        self.state.trades = trades
        logger.info(
            "scope_loaded",
            trades=len(trades),
            line_items=sum(len(t.line_items) for t in trades),
        )
        return trades

    def toggle_trade(self, trade_id: str) -> Selection:
        trade = self.get_trade(trade_id)
        target = trade.selection != Selection.ALL
        for item in trade.line_items:
            item.checked = target
        return trade.selection

    def toggle_line_item(self, trade_id: str, item_id: str) -> LineItem:
        item = self.get_line_item(trade_id, item_id)
        item.checked = not item.checked
        return item

    def add_supplement(self, trade_id: str) -> SupplementItem:
        trade = self.get_trade(trade_id)
        existing = {supp.id for supp in trade.supplements}
        supp_id = new_id("supp")
        while supp_id in existing:
            supp_id = new_id("supp")
        supp = SupplementItem(id=supp_id)
        trade.supplements.append(supp)
        return supp

    def update_supplement(self, trade_id: str, supp_id: str, field: str, value: Any) -> SupplementItem:
        if field not in SUPPLEMENT_FIELDS:
            raise InputError(
                f"Unknown supplement field: {field}",
                code=ErrorCode.INVALID_FIELD,
                details={"field": field, "allowed": list(SUPPLEMENT_FIELDS)},
            )
        supp = self.get_supplement(trade_id, supp_id)
        if field == "amount":
            supp.amount = coerce_money(value)
        else:
            setattr(supp, field, "" if value is None else str(value))
        return supp

    def remove_supplement(self, trade_id: str, supp_id: str) -> SupplementItem:
        supp = self.get_supplement(trade_id, supp_id)
        trade = self.get_trade(trade_id)
        trade.supplements = [s for s in trade.supplements if s.id != supp_id]
        return supp

    def update_notes(self, trade_id: str, item_id: str, notes: str) -> LineItem:
        item = self.get_line_item(trade_id, item_id)
        item.notes = "" if notes is None else str(notes)
        return item

    def set_deductible(self, amount: Any) -> float:
        self.state.deductible = coerce_money(amount)
        return self.state.deductible

    def update_details(
        self,
        signature: Union[Signature, Dict[str, Any], None] = None,
        claim_number: Optional[str] = None,
        claim_adjuster: Union[ClaimAdjuster, Dict[str, Any], None] = None,
        work_not_doing: Optional[str] = None,
    ) -> ScopeState:
        """Store the opaque finalize-step fields; None leaves a field unchanged"""
        # Validate both parts before touching state
        try:
            signature = Signature.model_validate(signature) if signature is not None else None
            claim_adjuster = (
                ClaimAdjuster.model_validate(claim_adjuster) if claim_adjuster is not None else None
            )
        except ValidationError as e:
            raise InputError(
                "Invalid signature or claim adjuster details",
                code=ErrorCode.INVALID_FIELD,
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            )

        if signature is not None:
            self.state.signature = signature
        if claim_number is not None:
            self.state.claim_number = claim_number
        if claim_adjuster is not None:
            self.state.claim_adjuster = claim_adjuster
        if work_not_doing is not None:
            self.state.work_not_doing = work_not_doing
        return self.state

    # Derived views

    def compute_totals(self) -> Totals:
        trade_totals = []
        total_rcv = Decimal("0")
        total_acv = Decimal("0")
        total_supplements = Decimal("0")

        for trade in self.state.trades:
            supplement_sum = sum((_dec(s.amount) for s in trade.supplements), Decimal("0"))
            checked = trade.checked_items()
            trade_rcv = sum((_dec(i.rcv) for i in checked), Decimal("0")) + supplement_sum
            trade_acv = sum((_dec(i.acv) for i in checked), Decimal("0")) + supplement_sum

            trade_totals.append(TradeTotals(
                trade_id=trade.id,
                name=trade.name,
                rcv=_money(trade_rcv),
                acv=_money(trade_acv),
                supplements=_money(supplement_sum),
            ))
            total_rcv += trade_rcv
            total_acv += trade_acv
            total_supplements += supplement_sum

        deductible = _dec(self.state.deductible)
        return Totals(
            trades=trade_totals,
            total_rcv=_money(total_rcv),
            total_acv=_money(total_acv),
            total_supplements=_money(total_supplements),
            depreciation=_money(total_rcv - total_acv),
            deductible=_money(deductible),
            insurance_will_pay=_money(max(Decimal("0"), total_rcv - deductible)),
            homeowner_responsibility=_money(deductible),
        )

    def work_to_do(self) -> List[Trade]:
        """Trades with at least one checked item or any supplement"""
        return [t for t in self.state.trades if t.checked_items() or t.supplements]

    def work_not_doing(self) -> List[Trade]:
        """Trades with at least one excluded item"""
        return [t for t in self.state.trades if t.excluded_items()]

    def pending_supplements(self) -> List[Trade]:
        return [t for t in self.state.trades if t.supplements]
