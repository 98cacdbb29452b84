"""Email dispatch.

Only a logging transport exists: requests are validated and recorded, and
nothing leaves the process. A real provider plugs in by implementing
``send(request) -> dict``.
"""
from typing import Any, Dict, Optional

import structlog

from .config import settings
from .errors import EmailError, ErrorCode, InputError
from .models import EmailRequest

logger = structlog.get_logger(__name__)


class LoggingEmailTransport:
    """Transport that logs the request instead of sending it"""

    def __init__(self, sender: Optional[str] = None):
        self.sender = sender or settings.email_sender

    async def send(self, request: EmailRequest) -> Dict[str, Any]:
        logger.info(
            "email_request_received",
            sender=self.sender,
            to=request.to,
            subject=request.subject,
            attachments=[a.filename for a in request.attachments],
        )
        return {"success": True, "message": "Email queued for sending"}


def validate_email_request(request: EmailRequest) -> EmailRequest:
    """Reject requests without recipients, subject or body"""
    recipients = [address.strip() for address in request.to if address and address.strip()]
    if not recipients:
        raise InputError(
            "At least one recipient email is required",
            code=ErrorCode.NO_RECIPIENTS,
        )
    if not request.subject or not request.html:
        raise InputError("Subject and html content are required", code=ErrorCode.INVALID_FIELD)
    return request.model_copy(update={"to": recipients})


async def send_email(request: EmailRequest, transport=None) -> Dict[str, Any]:
    request = validate_email_request(request)
    transport = transport or LoggingEmailTransport()
    try:
        return await transport.send(request)
    except Exception as e:
        logger.exception("email_send_failed", to=request.to)
        raise EmailError(f"Failed to send email: {e}")
