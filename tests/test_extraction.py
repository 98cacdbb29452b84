"""Tests for extraction module"""
import json

import pytest
from unittest.mock import Mock, patch

from scope_builder.config import settings
from scope_builder.errors import ErrorCode, ExtractionError
from scope_builder.extraction import (
    analyze_agreement,
    calculate_confidence,
    extract_scope,
    gemini_extract,
    ollama_extract,
    parse_json_response,
)
from scope_builder.pdf_parser import IngestedDocument


ESTIMATE = IngestedDocument(text="Roof 45 SQ laminated shingles 8,500.00")


def ollama_reply(content):
    return {"message": {"content": content}}


def gemini_client(text):
    mock_client = Mock()
    mock_response = Mock()
    mock_response.text = text
    mock_client.models.generate_content = Mock(return_value=mock_response)
    return mock_client


class RateLimited(Exception):
    code = 429


def test_calculate_confidence_complete(sample_trades_payload):
    """Test confidence when every item is complete"""
    assert calculate_confidence(sample_trades_payload) == 1.0


def test_calculate_confidence_partial():
    """Test items without quantity or RCV lower the confidence"""
    payload = {"trades": [{"name": "Roof", "lineItems": [
        {"quantity": "1 EA", "description": "Tear off", "rcv": 100},
        {"quantity": "", "description": "Drip edge", "rcv": 50},
        {"quantity": "2 EA", "description": "Vents", "rcv": 0},
        {"quantity": "10 LF", "description": "Flashing", "rcv": 30},
    ]}]}

    assert calculate_confidence(payload) == pytest.approx(0.5)


def test_calculate_confidence_no_items():
    """Test an empty extraction has zero confidence"""
    assert calculate_confidence({"trades": []}) == 0.0
    assert calculate_confidence({}) == 0.0


def test_parse_json_response_clean():
    """Test parsing clean JSON response"""
    result = parse_json_response('{"trades": []}')

    assert result == {"trades": []}


def test_parse_json_response_with_markdown():
    """Test parsing JSON response with markdown code blocks"""
    result = parse_json_response('```json\n{"trades": [{"name": "Roof"}]}\n```')

    assert result["trades"][0]["name"] == "Roof"


def test_parse_json_response_with_text():
    """Test parsing JSON response with surrounding text"""
    result = parse_json_response('Here is the scope: {"trades": []} Let me know!')

    assert result == {"trades": []}


def test_parse_json_response_invalid():
    """Test parsing invalid JSON raises a malformed response error"""
    with pytest.raises(ExtractionError) as exc_info:
        parse_json_response("not valid json")

    assert exc_info.value.code == ErrorCode.MALFORMED_RESPONSE
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_ollama_extract_success(sample_trades_payload):
    """Test successful Ollama extraction"""
    reply = ollama_reply(json.dumps(sample_trades_payload))

    with patch("scope_builder.extraction.ollama.chat", return_value=reply) as chat:
        result = await ollama_extract(ESTIMATE)

    assert result["provider"] == "ollama"
    assert result["confidence"] == 1.0
    assert [t["name"] for t in result["data"]["trades"]] == ["Roofing", "Gutters"]
    messages = chat.call_args.kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert messages[1]["content"] == ESTIMATE.text


@pytest.mark.asyncio
async def test_ollama_extract_sends_images():
    """Test scanned pages are attached to the user message"""
    document = IngestedDocument(images=["aW1n"], file_type="pdf")
    reply = ollama_reply('{"trades": []}')

    with patch("scope_builder.extraction.ollama.chat", return_value=reply) as chat:
        await ollama_extract(document)

    user_message = chat.call_args.kwargs["messages"][1]
    assert user_message["images"] == ["aW1n"]
    assert "insurance document" in user_message["content"]


@pytest.mark.asyncio
async def test_ollama_extract_failure():
    """Test Ollama extraction failure"""
    with patch("scope_builder.extraction.ollama.chat", side_effect=Exception("Connection error")):
        with pytest.raises(ExtractionError, match="Ollama request failed") as exc_info:
            await ollama_extract(ESTIMATE)

    assert exc_info.value.code == ErrorCode.LLM_ERROR


@pytest.mark.asyncio
async def test_ollama_missing_model_hint():
    """Test a missing local model suggests pulling it"""
    with patch("scope_builder.extraction.ollama.chat", side_effect=Exception("model 'x' not found")):
        with pytest.raises(ExtractionError, match="ollama pull"):
            await ollama_extract(ESTIMATE)


@pytest.mark.asyncio
async def test_ollama_extract_rejects_malformed_trades():
    """Test structurally invalid trades are reported as malformed"""
    reply = ollama_reply('{"trades": [{"name": "Roof", "lineItems": [{"description": "x", "rcv": "abc"}]}]}')

    with patch("scope_builder.extraction.ollama.chat", return_value=reply):
        with pytest.raises(ExtractionError) as exc_info:
            await ollama_extract(ESTIMATE)

    assert exc_info.value.code == ErrorCode.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_gemini_extract_success(sample_trades_payload):
    """Test successful Gemini extraction"""
    client = gemini_client(json.dumps(sample_trades_payload))

    with patch.object(settings, "gemini_api_key", "test-key"):
        with patch("scope_builder.extraction.genai.Client", return_value=client) as client_cls:
            result = await gemini_extract(ESTIMATE)

    assert result["provider"] == "gemini"
    assert result["confidence"] == 1.0
    assert result["data"]["trades"][0]["lineItems"][1]["rcv"] == 8500.0
    client_cls.assert_called_once_with(api_key="test-key")


@pytest.mark.asyncio
async def test_gemini_extract_no_api_key():
    """Test Gemini extraction without API key"""
    with patch.object(settings, "gemini_api_key", None):
        with pytest.raises(ExtractionError, match="GEMINI_API_KEY not set"):
            await gemini_extract(ESTIMATE)


@pytest.mark.asyncio
async def test_gemini_rate_limit():
    """Test provider throttling maps to a rate limit error"""
    client = Mock()
    client.models.generate_content = Mock(side_effect=RateLimited("slow down"))

    with patch.object(settings, "gemini_api_key", "test-key"):
        with patch("scope_builder.extraction.genai.Client", return_value=client):
            with pytest.raises(ExtractionError) as exc_info:
                await gemini_extract(ESTIMATE)

    assert exc_info.value.code == ErrorCode.LLM_RATE_LIMIT
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_extract_scope_ollama_success():
    """Test a confident local result is returned without calling Gemini"""
    local = {"data": {"trades": []}, "confidence": 0.9, "provider": "ollama"}

    with patch("scope_builder.extraction.ollama_extract", return_value=local):
        with patch("scope_builder.extraction.gemini_extract") as gemini:
            result = await extract_scope(ESTIMATE, prefer_local=True)

    assert result["provider"] == "ollama"
    gemini.assert_not_called()


@pytest.mark.asyncio
async def test_extract_scope_gemini_fallback():
    """Test a failed local extraction falls back to Gemini"""
    remote = {"data": {"trades": []}, "confidence": 0.85, "provider": "gemini"}

    with patch("scope_builder.extraction.ollama_extract", side_effect=ExtractionError("Ollama failed")):
        with patch("scope_builder.extraction.gemini_extract", return_value=remote):
            result = await extract_scope(ESTIMATE, prefer_local=True)

    assert result["provider"] == "gemini"
    assert result["confidence"] == 0.85


@pytest.mark.asyncio
async def test_extract_scope_low_confidence_keeps_local_when_gemini_fails():
    """Test the local result survives when the fallback also fails"""
    local = {"data": {"trades": []}, "confidence": 0.4, "provider": "ollama"}

    with patch("scope_builder.extraction.ollama_extract", return_value=local):
        with patch("scope_builder.extraction.gemini_extract", side_effect=ExtractionError("down")):
            result = await extract_scope(ESTIMATE, prefer_local=True)

    assert result is local


@pytest.mark.asyncio
async def test_extract_scope_all_providers_failed():
    """Test failures from every provider are reported together"""
    with patch("scope_builder.extraction.ollama_extract", side_effect=ExtractionError("local down")):
        with patch("scope_builder.extraction.gemini_extract", side_effect=ExtractionError("remote down")):
            with pytest.raises(ExtractionError, match="All extraction methods failed") as exc_info:
                await extract_scope(ESTIMATE, prefer_local=True)

    assert exc_info.value.code == ErrorCode.ALL_PROVIDERS_FAILED
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_extract_scope_rate_limit_propagates():
    """Test a rate limit is not hidden behind the generic failure"""
    limited = ExtractionError("Gemini rate limit reached", code=ErrorCode.LLM_RATE_LIMIT)

    with patch("scope_builder.extraction.gemini_extract", side_effect=limited):
        with pytest.raises(ExtractionError) as exc_info:
            await extract_scope(ESTIMATE, prefer_local=False)

    assert exc_info.value.code == ErrorCode.LLM_RATE_LIMIT


@pytest.mark.asyncio
async def test_analyze_agreement_local():
    """Test agreement summaries from the local model"""
    reply = ollama_reply("  Job Summary - Acme Exteriors\nContract Total: $12,000  ")

    with patch("scope_builder.extraction.ollama.chat", return_value=reply):
        result = await analyze_agreement(ESTIMATE, prefer_local=True)

    assert result["provider"] == "ollama"
    assert result["analysis"].startswith("Job Summary - Acme Exteriors")


@pytest.mark.asyncio
async def test_analyze_agreement_gemini():
    """Test agreement summaries fall back to Gemini"""
    client = gemini_client("Job Summary - Acme Exteriors")

    with patch.object(settings, "gemini_api_key", "test-key"):
        with patch("scope_builder.extraction.ollama.chat", side_effect=Exception("Connection error")):
            with patch("scope_builder.extraction.genai.Client", return_value=client):
                result = await analyze_agreement(ESTIMATE, prefer_local=True)

    assert result == {"analysis": "Job Summary - Acme Exteriors", "provider": "gemini"}
