"""Unit tests for the LLM extraction client.

Provider SDK clients are replaced with mocks; no network calls are made.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import fitz  # PyMuPDF
import httpx
import pytest
from google.genai import errors as genai_errors

from dealscope.core.config import Settings
from dealscope.core.exceptions import PermanentExtractionError, TransientExtractionError
from dealscope.modules.analysis.agents.base import LLMExtractionClient, _status_kind
from dealscope.modules.analysis.agents.gateway import EXTRACTION_SCHEMA

from conftest import DECK_PAYLOAD

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/messages")


def _settings(**overrides) -> Settings:
    values = {"google_ai_api_key": "test-key", "anthropic_api_key": "test-key", **overrides}
    return Settings(_env_file=None, **values)


def _pdf(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    if text:
        page.insert_textbox(fitz.Rect(40, 40, 560, 800), text, fontsize=9)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.fixture
def gemini() -> LLMExtractionClient:
    client = LLMExtractionClient(provider="google", settings=_settings())
    client._gemini_client = MagicMock()
    client._gemini_client.aio.models.generate_content = AsyncMock(
        return_value=SimpleNamespace(
            text=json.dumps(DECK_PAYLOAD),
            usage_metadata=SimpleNamespace(prompt_token_count=1200, candidates_token_count=300),
        )
    )
    return client


@pytest.fixture
def claude() -> LLMExtractionClient:
    client = LLMExtractionClient(provider="anthropic", settings=_settings())
    client._anthropic_client = MagicMock()
    client._anthropic_client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="```json\n" + json.dumps(DECK_PAYLOAD) + "\n```")],
            usage=SimpleNamespace(input_tokens=2000, output_tokens=400),
        )
    )
    return client


# ---------------------------------------------------------------------------
# Construction and prompts
# ---------------------------------------------------------------------------


def test_default_model_per_provider() -> None:
    assert LLMExtractionClient(provider="google", settings=_settings()).model == "gemini-2.5-flash"
    assert LLMExtractionClient(provider="anthropic", settings=_settings()).model.startswith("claude-")


def test_unsupported_provider_raises() -> None:
    with pytest.raises(ValueError, match="Unsupported provider"):
        LLMExtractionClient(provider="openai", settings=_settings())


def test_prompts_embed_schema_and_strict_instructions() -> None:
    client = LLMExtractionClient(provider="google", settings=_settings())

    system, instruction = client.build_prompts(EXTRACTION_SCHEMA, strict=False)
    assert "{schema}" not in system
    assert '"runway_months"' in system
    assert instruction.startswith("Extract")

    _, strict_instruction = client.build_prompts(EXTRACTION_SCHEMA, strict=True)
    assert strict_instruction.startswith("Your previous answer could not be used")


def test_missing_prompt_file_raises() -> None:
    with pytest.raises(FileNotFoundError):
        LLMExtractionClient.load_prompt("nope.txt")


# ---------------------------------------------------------------------------
# Status mapping and JSON parsing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (429, (True, "quota_exceeded")),
        (408, (True, "timeout")),
        (504, (True, "timeout")),
        (500, (True, "unavailable")),
        (503, (True, "unavailable")),
        (529, (True, "unavailable")),
        (413, (False, "oversized")),
        (400, (False, "unsupported_format")),
        (None, (False, "unsupported_format")),
    ],
)
def test_status_kind(status, expected) -> None:
    assert _status_kind(status) == expected


def test_parse_json() -> None:
    assert LLMExtractionClient.parse_json('```json\n{"confidence": 70}\n```') == {"confidence": 70}
    assert LLMExtractionClient.parse_json("[1, 2]") == "[1, 2]"
    assert LLMExtractionClient.parse_json("no json here") == "no json here"


# ---------------------------------------------------------------------------
# Payload preparation
# ---------------------------------------------------------------------------


async def test_text_payload_is_decoded(gemini) -> None:
    assert await gemini._prepare(b"Revenue: $1.2M", "text/plain") == ("Revenue: $1.2M", None)


async def test_image_payload_is_sent_inline(gemini) -> None:
    assert await gemini._prepare(b"\x89PNG", "image/png") == (None, "image/png")


async def test_pdf_with_text_layer_is_sent_as_text(gemini) -> None:
    body = "Acme Robotics builds autonomous palletizing robots for warehouses. " * 6

    text, inline = await gemini._prepare(_pdf(body), "application/pdf")

    assert inline is None
    assert text.startswith("## Slide 1")
    assert "Acme Robotics" in text


async def test_scanned_pdf_is_sent_inline(gemini) -> None:
    assert await gemini._prepare(_pdf(""), "application/pdf") == (None, "application/pdf")


async def test_unsupported_mime_type_is_permanent(gemini) -> None:
    with pytest.raises(PermanentExtractionError) as exc_info:
        await gemini._prepare(b"PK\x03\x04", "application/zip")
    assert exc_info.value.kind == "unsupported_format"


async def test_unreadable_pdf_is_permanent(gemini) -> None:
    with pytest.raises(PermanentExtractionError):
        await gemini._prepare(b"not a pdf at all", "application/pdf")


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


async def test_gemini_extract(gemini) -> None:
    response = await gemini.extract(b"Acme deck text", "text/plain", EXTRACTION_SCHEMA)

    assert response.content == DECK_PAYLOAD
    assert response.provider == "google"
    assert response.model == "gemini-2.5-flash"
    assert response.input_tokens == 1200
    assert response.output_tokens == 300
    assert response.characters == len("Acme deck text")

    kwargs = gemini._gemini_client.aio.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-2.5-flash"
    assert kwargs["contents"][1] == "Acme deck text"
    assert kwargs["config"].response_mime_type == "application/json"


async def test_gemini_quota_error_is_transient(gemini) -> None:
    gemini._gemini_client.aio.models.generate_content.side_effect = genai_errors.ClientError(
        429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}},
    )

    with pytest.raises(TransientExtractionError) as exc_info:
        await gemini.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == "quota_exceeded"


async def test_gemini_bad_request_is_permanent(gemini) -> None:
    gemini._gemini_client.aio.models.generate_content.side_effect = genai_errors.ClientError(
        400, {"error": {"code": 400, "message": "Unsupported MIME type", "status": "INVALID_ARGUMENT"}},
    )

    with pytest.raises(PermanentExtractionError) as exc_info:
        await gemini.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == "unsupported_format"


async def test_gemini_network_timeout_is_transient(gemini) -> None:
    gemini._gemini_client.aio.models.generate_content.side_effect = httpx.ReadTimeout("slow", request=_REQUEST)

    with pytest.raises(TransientExtractionError) as exc_info:
        await gemini.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == "timeout"


async def test_gemini_connection_error_is_transient(gemini) -> None:
    gemini._gemini_client.aio.models.generate_content.side_effect = httpx.ConnectError("refused", request=_REQUEST)

    with pytest.raises(TransientExtractionError) as exc_info:
        await gemini.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == "unavailable"


async def test_gemini_unreadable_response_is_permanent(gemini) -> None:
    gemini._gemini_client.aio.models.generate_content.side_effect = genai_errors.UnknownApiResponseError(
        "Failed to parse response as JSON"
    )

    with pytest.raises(PermanentExtractionError) as exc_info:
        await gemini.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == "unparseable"


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


async def test_claude_extract_text(claude) -> None:
    response = await claude.extract(b"Acme deck text", "text/plain", EXTRACTION_SCHEMA)

    assert response.content == DECK_PAYLOAD
    assert response.provider == "anthropic"
    assert response.input_tokens == 2000
    assert response.output_tokens == 400

    kwargs = claude._anthropic_client.messages.create.call_args.kwargs
    assert kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
    document = kwargs["messages"][0]["content"][0]
    assert document == {"type": "text", "text": "Acme deck text"}


async def test_claude_image_is_sent_as_base64_block(claude) -> None:
    response = await claude.extract(b"\x89PNG fake", "image/png", EXTRACTION_SCHEMA, strict=True)

    assert response.characters == 0
    kwargs = claude._anthropic_client.messages.create.call_args.kwargs
    document, instruction = kwargs["messages"][0]["content"]
    assert document["type"] == "image"
    assert document["source"]["media_type"] == "image/png"
    assert instruction["text"].startswith("Your previous answer could not be used")


def _status_error(cls, status: int):
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"HTTP {status}", response=response, body=None)


@pytest.mark.parametrize(
    ("error", "expected_cls", "kind"),
    [
        (lambda: _status_error(anthropic.RateLimitError, 429), TransientExtractionError, "quota_exceeded"),
        (lambda: _status_error(anthropic.InternalServerError, 503), TransientExtractionError, "unavailable"),
        (lambda: _status_error(anthropic.APIStatusError, 529), TransientExtractionError, "unavailable"),
        (lambda: _status_error(anthropic.BadRequestError, 400), PermanentExtractionError, "unsupported_format"),
        (lambda: _status_error(anthropic.APIStatusError, 413), PermanentExtractionError, "oversized"),
        (lambda: anthropic.APITimeoutError(request=_REQUEST), TransientExtractionError, "timeout"),
        (lambda: anthropic.APIConnectionError(request=_REQUEST), TransientExtractionError, "unavailable"),
        (
            lambda: anthropic.APIResponseValidationError(httpx.Response(200, request=_REQUEST), body=None),
            PermanentExtractionError,
            "unparseable",
        ),
        (lambda: anthropic.APIError("stream ended early", _REQUEST, body=None), PermanentExtractionError, "unsupported_format"),
    ],
)
async def test_claude_errors_are_classified(claude, error, expected_cls, kind) -> None:
    claude._anthropic_client.messages.create.side_effect = error()

    with pytest.raises(expected_cls) as exc_info:
        await claude.extract(b"deck", "text/plain", EXTRACTION_SCHEMA)
    assert exc_info.value.kind == kind
