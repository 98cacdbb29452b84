"""
Summary rendering for finished scopes.

Projects a ScopeState into the signed scope-of-work document (HTML for
screen/print, plain text for copy-paste), the trade partner previews, and
the email payload sent to the homeowner and adjuster.

Architecture:
- Jinja2 templates under ``templates/``
- All numbers come from ScopeEngine.compute_totals(); nothing is summed here
"""
import base64
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from .engine import ScopeEngine
from .errors import ErrorCode, InputError, RenderError
from .models import EmailAttachment, EmailRequest, ScopeState, Trade
from .partners import PartnerRegistry

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

PREVIEW_LIMIT = 3
PREVIEW_DESCRIPTION_CHARS = 50
ATTACHMENT_FILENAME = "scope-summary.html"


def format_currency(value: Optional[float]) -> str:
    return f"${(value or 0):,.2f}"


def truncate(text: str, limit: int = PREVIEW_DESCRIPTION_CHARS) -> str:
    return text[:limit] + "..." if len(text) > limit else text


_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
_env.filters["currency"] = format_currency


def _trade_section(trade: Trade, trade_totals) -> Dict[str, Any]:
    checked = trade.checked_items()
    return {
        "id": trade.id,
        "name": trade.name,
        "selection": trade.selection.value,
        "rcv": trade_totals.rcv,
        "acv": trade_totals.acv,
        "checked_items": checked,
        "excluded_items": trade.excluded_items(),
        "noted_items": [item for item in checked if item.notes],
        "supplements": trade.supplements,
    }


def build_summary(state: ScopeState, generated_on: Optional[date] = None) -> Dict[str, Any]:
    """Read-only view of the session used by every template"""
    engine = ScopeEngine(state)
    totals = engine.compute_totals()
    by_id = {t.trade_id: t for t in totals.trades}

    return {
        "claim_number": state.claim_number,
        "claim_adjuster": state.claim_adjuster,
        "signature": state.signature,
        "work_not_doing_note": state.work_not_doing,
        "work_to_do": [_trade_section(t, by_id[t.id]) for t in engine.work_to_do()],
        "work_not_doing": [
            {"name": t.name, "excluded": t.excluded_items()} for t in engine.work_not_doing()
        ],
        "pending_supplements": [
            {"name": t.name, "supplements": t.supplements} for t in engine.pending_supplements()
        ],
        "totals": totals,
        "show_acv": totals.total_acv > 0,
        "generated_on": (generated_on or date.today()).isoformat(),
    }


def _render(template_name: str, **context) -> str:
    try:
        return _env.get_template(template_name).render(**context)
    except (TemplateError, TypeError, ValueError, AttributeError) as e:
        logger.error("render_failed", template=template_name, error=str(e))
        raise RenderError(f"Failed to render {template_name}: {e}")


def render_html(state: ScopeState, generated_on: Optional[date] = None) -> str:
    return _render("summary.html", **build_summary(state, generated_on))


def render_text(state: ScopeState, generated_on: Optional[date] = None) -> str:
    return _render("summary.txt", **build_summary(state, generated_on))


def partner_previews(registry: PartnerRegistry, state: ScopeState) -> List[Dict[str, Any]]:
    """Relevant partners with a short "can help with" list and an overflow count"""
    previews = []
    for partner_id in registry.relevant_partners(state.trades):
        items = registry.matching_excluded_items(partner_id, state.trades)
        previews.append({
            "partner": registry.get(partner_id).to_wire(),
            "canHelpWith": [
                {"trade": item.trade, "description": truncate(item.description)}
                for item in items[:PREVIEW_LIMIT]
            ],
            "moreCount": max(0, len(items) - PREVIEW_LIMIT),
        })
    return previews


def email_recipients(state: ScopeState) -> List[str]:
    recipients = []
    if state.signature and state.signature.homeowner_email:
        recipients.append(state.signature.homeowner_email)
    if state.claim_adjuster and state.claim_adjuster.email:
        recipients.append(state.claim_adjuster.email)
    return list(dict.fromkeys(recipients))


def build_email_request(state: ScopeState, generated_on: Optional[date] = None) -> EmailRequest:
    """Email to the homeowner and adjuster with the summary document attached"""
    recipients = email_recipients(state)
    if not recipients:
        raise InputError(
            "No email addresses available. Please ensure homeowner email is filled in.",
            code=ErrorCode.NO_RECIPIENTS,
        )

    summary = build_summary(state, generated_on)
    document = _render("summary.html", **summary)
    html = _render("email.html", **summary)

    return EmailRequest(
        to=recipients,
        subject=f"Scope of Work Summary - Claim #{state.claim_number or 'N/A'}",
        html=html,
        attachments=[
            EmailAttachment(
                filename=ATTACHMENT_FILENAME,
                content=base64.b64encode(document.encode("utf-8")).decode("ascii"),
                content_type="text/html",
            )
        ],
    )
