"""Trade partner directory and keyword matching against excluded work"""
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from .errors import ErrorCode, InputError, NotFoundError
from .models import ExcludedItem, ScopeState, Trade, TradePartner

logger = structlog.get_logger(__name__)


DEFAULT_PARTNERS: List[Dict[str, Any]] = [
    {
        "id": "siding",
        "name": "Expert Siding Solutions",
        "logo": "🏢",
        "rating": 4.9,
        "synopsis": "Siding installation and repair in fiber cement, vinyl and composite.",
        "keywords": ["siding", "fascia", "soffit", "trim"],
    },
    {
        "id": "windows",
        "name": "Premium Window Co.",
        "logo": "🪟",
        "rating": 4.8,
        "synopsis": "Window replacement and installation with energy-efficient options.",
        "keywords": ["windows", "doors", "window", "door", "glass"],
    },
    {
        "id": "painting",
        "name": "Elite Painting Services",
        "logo": "🎨",
        "rating": 4.9,
        "synopsis": "Interior and exterior painting with careful prep work.",
        "keywords": ["painting", "paint", "interior", "exterior"],
    },
    {
        "id": "hvac",
        "name": "Climate Control HVAC",
        "logo": "❄️",
        "rating": 4.7,
        "synopsis": "HVAC installation, repair and maintenance with emergency support.",
        "keywords": ["hvac", "heating", "cooling", "air conditioning", "ac", "furnace"],
    },
    {
        "id": "garage-doors",
        "name": "Garage Door Pros",
        "logo": "🚪",
        "rating": 4.8,
        "synopsis": "Garage door installation, repair and wraps.",
        "keywords": ["garage", "door", "garage doors", "garage door wrap", "wrap"],
    },
    {
        "id": "decks",
        "name": "Deck Masters Construction",
        "logo": "🏗️",
        "rating": 4.9,
        "synopsis": "Custom deck building and restoration in treated, composite and hardwood.",
        "keywords": ["deck", "decking", "framing", "outdoor living"],
    },
    {
        "id": "fencing",
        "name": "Fence Experts LLC",
        "logo": "🚧",
        "rating": 4.8,
        "synopsis": "Wood, vinyl and chain-link fence installation and repair.",
        "keywords": ["fence", "fencing", "gate"],
    },
]


def keyword_matches(partner: TradePartner, trade_name: str) -> bool:
    """True if the trade name contains a keyword or a keyword contains the name's first word"""
    name = trade_name.strip().lower()
    if not name:
        return False
    first_word = name.split()[0]
    return any(keyword in name or first_word in keyword for keyword in partner.keywords)


class PartnerRegistry:
    """Insertion-ordered table of trade partners"""

    def __init__(self, entries: Optional[Iterable[Union[TradePartner, Dict[str, Any]]]] = None):
        self._partners: Dict[str, TradePartner] = {}
        for entry in entries or []:
            self.register(entry)

    @classmethod
    def default(cls) -> "PartnerRegistry":
        return cls(DEFAULT_PARTNERS)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "PartnerRegistry":
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)
        if not isinstance(entries, list):
            raise ValueError(f"Partner directory must be a JSON list: {path}")
        return cls(entries)

    def __len__(self) -> int:
        return len(self._partners)

    def __iter__(self):
        return iter(self._partners.values())

    def register(self, entry: Union[TradePartner, Dict[str, Any]]) -> TradePartner:
        partner = entry if isinstance(entry, TradePartner) else TradePartner.model_validate(entry)
        self._partners[partner.id] = partner
        return partner

    def get(self, partner_id: str) -> TradePartner:
        partner = self._partners.get(partner_id)
        if partner is None:
            raise NotFoundError(
                ErrorCode.PARTNER_NOT_FOUND,
                f"Trade partner not found: {partner_id}",
                partner_id=partner_id,
            )
        return partner

    def matching_trades(self, partner: TradePartner, trades: Iterable[Trade]) -> List[Trade]:
        """Trades with excluded work whose name matches the partner's keywords"""
        return [t for t in trades if t.excluded_items() and keyword_matches(partner, t.name)]

    def relevant_partners(self, trades: Iterable[Trade]) -> List[str]:
        trades = list(trades)
        return [p.id for p in self._partners.values() if self.matching_trades(p, trades)]

    def matching_excluded_items(self, partner_id: str, trades: Iterable[Trade]) -> List[ExcludedItem]:
        partner = self.get(partner_id)
        return [
            ExcludedItem(
                trade_id=trade.id,
                trade=trade.name,
                id=item.id,
                quantity=item.quantity,
                description=item.description,
            )
            for trade in self.matching_trades(partner, trades)
            for item in trade.excluded_items()
        ]

    def share_with_partners(self, partner_ids: List[str], state: ScopeState) -> Dict[str, Any]:
        """Build the hand-off record sent to the selected partners about excluded work"""
        if not partner_ids:
            raise InputError(
                "Please select at least one trade partner",
                code=ErrorCode.NO_PARTNERS_SELECTED,
            )
        partners = [self.get(pid) for pid in dict.fromkeys(partner_ids)]

        signature = state.signature
        sharing = {
            "homeownerName": (signature.homeowner_name if signature else "") or "Homeowner",
            "homeownerEmail": (signature.homeowner_email if signature else "") or "",
            "contractorName": (signature.contractor_name if signature else "") or "Contractor",
            "selectedPartners": [p.id for p in partners],
            "workNotDoingItems": [
                {"trade": trade.name, "description": item.description, "quantity": item.quantity}
                for trade in state.trades
                for item in trade.excluded_items()
            ],
        }
        logger.info(
            "shared_with_partners",
            partners=[p.name for p in partners],
            items=len(sharing["workNotDoingItems"]),
        )
        return sharing


def load_registry(path: Optional[str] = None) -> PartnerRegistry:
    """Registry from a JSON directory file if configured, else the built-in directory"""
    if path:
        registry = PartnerRegistry.from_json_file(path)
        logger.info("partner_directory_loaded", path=path, partners=len(registry))
        return registry
    return PartnerRegistry.default()
