"""LLM scope extraction with Ollama + Gemini fallback"""
import base64
import io
import json
from typing import Any, Dict, List, Optional

import ollama
import structlog
from google import genai
from PIL import Image

from .config import settings
from .engine import validate_trades_payload
from .errors import ErrorCode, ExtractionError
from .pdf_parser import IngestedDocument

logger = structlog.get_logger(__name__)


SCOPE_PROMPT = """
You are parsing an insurance claim estimate for an exteriors contractor.
Group every line item by trade (Roof, Gutters, Siding, Fencing, Windows, ...)
and return a strictly formatted JSON object.

The JSON structure must be as follows:
{
  "trades": [
    {
      "id": "trade-1",
      "name": "Roof",
      "checked": true,
      "supplements": [],
      "lineItems": [
        {
          "id": "item-1",
          "quantity": "45 SQ",
          "description": "string (work to be done)",
          "rcv": number,
          "acv": number (optional),
          "checked": true,
          "notes": ""
        }
      ]
    }
  ]
}

Rules:
1. Keep quantity and unit together as one string, e.g. "120 LF", "1 EA".
2. rcv is the replacement cost value as a plain number without $ or commas.
3. Include acv only when the document lists an actual cash value.
4. Use capitalized trade names; use "General" when the trade is unclear.
5. Ids must be unique within the document.
6. Output ONLY the valid JSON string. Do not include markdown formatting like ```json.
"""

AGREEMENT_PROMPT = """
You are summarizing a signed construction agreement for an exteriors company's crew.
Write a plain-text job summary with these sections, in this order:

Job Summary - [Company Name]
Client / Address / Project # / Sales Rep / Signed date

Work to Complete (grouped by trade, one bullet per task, with materials and colors)
Upgrades (No Charge)
Not Doing (excluded items only)
Job Notes (colors, deposit, cleanup, supplement reminders, crew instructions)
Warranty (labor and material)
Contract Total: $[amount]

Use "Not specified" for anything missing from the agreement.
"""

SCOPE_USER_MESSAGE = "Please parse this insurance document and extract the scope items."


def calculate_confidence(payload: Dict[str, Any]) -> float:
    """Share of line items that carry a description, a quantity and a positive RCV"""
    items = [
        item
        for trade in payload.get("trades") or []
        for item in (trade.get("lineItems") or [])
    ]
    if not items:
        return 0.0

    complete = sum(
        1 for item in items
        if item.get("description") and item.get("quantity") and item.get("rcv")
    )
    return complete / len(items)


def parse_json_response(text: str) -> Dict[str, Any]:
    """Parse JSON from LLM response, handling markdown code blocks"""
    # Remove markdown code blocks if present
    if "```" in text:
        text = text.replace("```json", "").replace("```", "")

    # Find JSON object bounds
    first_brace = text.find("{")
    last_brace = text.rfind("}")

    if first_brace != -1 and last_brace != -1:
        text = text[first_brace:last_brace + 1]

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionError(
            f"Failed to parse JSON response: {e}",
            code=ErrorCode.MALFORMED_RESPONSE,
        )


def is_rate_limited(error: Exception) -> bool:
    status = getattr(error, "status_code", None) or getattr(error, "code", None)
    if status == 429:
        return True
    message = str(error).lower()
    return "rate limit" in message or "resource_exhausted" in message or "429" in message


def _provider_error(provider: str, error: Exception) -> ExtractionError:
    if isinstance(error, ExtractionError):
        return error
    if is_rate_limited(error):
        return ExtractionError(
            f"{provider} rate limit reached, please retry shortly",
            code=ErrorCode.LLM_RATE_LIMIT,
            details={"provider": provider},
        )
    return ExtractionError(
        f"{provider} request failed: {error}",
        code=ErrorCode.LLM_ERROR,
        details={"provider": provider},
    )


async def ollama_generate(prompt: str, document: IngestedDocument, user_message: str = "") -> str:
    """Run the prompt against the local Ollama model"""
    message: Dict[str, Any] = {
        "role": "user",
        "content": document.text or user_message,
    }
    if document.images:
        message["images"] = document.images

    try:
        response = ollama.chat(
            model=settings.ollama_model,
            messages=[{"role": "system", "content": prompt}, message],
        )
    except Exception as e:
        if "not found" in str(e).lower():
            raise ExtractionError(
                f"Ollama model '{settings.ollama_model}' not found. "
                f"Please run: ollama pull {settings.ollama_model}",
                details={"provider": "ollama"},
            )
        raise _provider_error("Ollama", e)

    return response["message"]["content"]


async def gemini_generate(prompt: str, document: IngestedDocument, user_message: str = "") -> str:
    """Run the prompt against the Gemini API"""
    api_key = settings.gemini_api_key
    if not api_key:
        raise ExtractionError("GEMINI_API_KEY not set", details={"provider": "gemini"})

    contents: List[Any] = [prompt]
    if document.text:
        contents.append(document.text)
    else:
        contents.append(user_message)
    # Convert base64 to PIL Images for Gemini
    for img_base64 in document.images:
        contents.append(Image.open(io.BytesIO(base64.b64decode(img_base64))))

    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=settings.gemini_model,
            contents=contents
        )
    except Exception as e:
        raise _provider_error("Gemini", e)

    text = response.text
    if not text:
        raise ExtractionError("No response from Gemini", details={"provider": "gemini"})
    return text


def _scope_result(text: str, provider: str) -> Dict[str, Any]:
    trades = validate_trades_payload(parse_json_response(text))
    data = {"trades": [trade.to_wire() for trade in trades]}
    return {
        "data": data,
        "confidence": calculate_confidence(data),
        "provider": provider,
    }


async def ollama_extract(document: IngestedDocument) -> Dict[str, Any]:
    """Extract scope trades using the local Ollama model"""
    text = await ollama_generate(SCOPE_PROMPT, document, SCOPE_USER_MESSAGE)
    return _scope_result(text, "ollama")


async def gemini_extract(document: IngestedDocument) -> Dict[str, Any]:
    """Extract scope trades using Gemini API"""
    text = await gemini_generate(SCOPE_PROMPT, document, SCOPE_USER_MESSAGE)
    return _scope_result(text, "gemini")


async def extract_scope(
    document: IngestedDocument,
    prefer_local: Optional[bool] = None
) -> Dict[str, Any]:
    """
    Extract scope trades with Ollama + Gemini fallback

    Args:
        document: Ingested text and/or page images
        prefer_local: Try Ollama first if True (default from settings)

    Returns:
        Dict with validated {"trades": [...]} data, confidence, and provider
    """
    if prefer_local is None:
        prefer_local = settings.prefer_local

    local_result = None
    if prefer_local:
        try:
            local_result = await ollama_extract(document)
            if local_result["confidence"] >= settings.confidence_threshold:
                return local_result
            logger.info("ollama_low_confidence", confidence=local_result["confidence"])
        except ExtractionError as e:
            logger.warning("ollama_extract_failed", code=e.code, error=e.message)

    try:
        return await gemini_extract(document)
    except ExtractionError as e:
        if local_result is not None:
            logger.warning("gemini_failed_using_local_result", code=e.code, error=e.message)
            return local_result
        if e.code in (ErrorCode.LLM_RATE_LIMIT, ErrorCode.MALFORMED_RESPONSE):
            raise
        raise ExtractionError(
            f"All extraction methods failed. Last error: {e.message}",
            code=ErrorCode.ALL_PROVIDERS_FAILED,
        )


async def analyze_agreement(
    document: IngestedDocument,
    prefer_local: Optional[bool] = None
) -> Dict[str, Any]:
    """Produce a plain-text job summary for a signed agreement"""
    if prefer_local is None:
        prefer_local = settings.prefer_local

    if prefer_local:
        try:
            analysis = await ollama_generate(AGREEMENT_PROMPT, document)
            if analysis.strip():
                return {"analysis": analysis.strip(), "provider": "ollama"}
        except ExtractionError as e:
            logger.warning("ollama_analyze_failed", code=e.code, error=e.message)

    try:
        analysis = await gemini_generate(AGREEMENT_PROMPT, document)
    except ExtractionError as e:
        if e.code == ErrorCode.LLM_RATE_LIMIT:
            raise
        raise ExtractionError(
            f"Failed to analyze agreement: {e.message}",
            code=ErrorCode.ALL_PROVIDERS_FAILED,
        )
    return {"analysis": analysis.strip(), "provider": "gemini"}
