"""DealScope LLM Extraction Client — the concrete extraction capability.

Wraps the configured LLM provider behind the ExtractionCapability contract:
  - PDFs with a text layer are parsed to Markdown (PyMuPDF) and sent as text;
    scanned or rasterised PDFs and images are sent inline
  - text/* payloads are decoded and sent as text
  - provider SDK errors become TransientExtractionError / PermanentExtractionError

Providers supported:
  - google (Gemini Flash / Pro)
  - anthropic (Claude Sonnet / Opus via direct API or Vertex AI)
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
import time
from pathlib import Path
from typing import Any, NoReturn

import anthropic
import httpx
import structlog
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from dealscope.core.config import Settings
from dealscope.core.exceptions import PermanentExtractionError, TransientExtractionError
from dealscope.modules.analysis.agent_schemas import CapabilityResponse
from dealscope.modules.analysis.agents.sanitizer import strip_code_fences
from dealscope.modules.analysis.pdf_service import parse_pdf

logger = structlog.get_logger()

# Default models per provider
DEFAULT_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4@20250514",
    "google": "gemini-2.5-flash",
}

INLINE_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

# Directory where prompt templates live
_PROMPTS_DIR = Path(__file__).parent / "prompts"


def _status_kind(status: int | None) -> tuple[bool, str]:
    """Map an HTTP status to (transient, error kind)."""
    if status == 429:
        return True, "quota_exceeded"
    if status in (408, 504):
        return True, "timeout"
    if status is not None and (status >= 500 or status == 529):
        return True, "unavailable"
    if status == 413:
        return False, "oversized"
    return False, "unsupported_format"


def _raise_for_status(status: int | None, message: str) -> NoReturn:
    transient, kind = _status_kind(status)
    if transient:
        raise TransientExtractionError(message, kind=kind)
    raise PermanentExtractionError(message, kind=kind)


class LLMExtractionClient:
    """ExtractionCapability backed by Gemini or Claude.

    Clients are created lazily, per instance; nothing is cached at module
    level.
    """

    agent_name: str = "Extractor"

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.provider = provider or self.settings.extraction_provider
        self.model = model or self.settings.extraction_model or DEFAULT_MODELS.get(self.provider, "")
        if self.provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {self.provider}")

        self._gemini_client: genai.Client | None = None
        self._anthropic_client: Any = None
        self._is_vertex = False

        logger.info(
            f"{self.agent_name} initialized",
            provider=self.provider,
            model=self.model,
        )

    # ------------------------------------------------------------------
    # Prompt loading
    # ------------------------------------------------------------------

    @staticmethod
    def load_prompt(filename: str) -> str:
        """Load a prompt template from the prompts/ directory."""
        path = _PROMPTS_DIR / filename
        if not path.exists():
            raise FileNotFoundError(f"Prompt file not found: {path}")
        return path.read_text(encoding="utf-8").strip()

    def build_prompts(self, schema: dict[str, Any], strict: bool) -> tuple[str, str]:
        """Return (system prompt, user instruction)."""
        system = self.load_prompt("extraction_system.txt").replace(
            "{schema}", json.dumps(schema, separators=(",", ":"))
        )
        instruction = "Extract the structured data from the following document."
        if strict:
            instruction = self.load_prompt("strict_reask.txt") + "\n\n" + instruction
        return system, instruction

    # ------------------------------------------------------------------
    # LLM client builders (lazy)
    # ------------------------------------------------------------------

    def _get_gemini_client(self) -> genai.Client:
        if self._gemini_client is None:
            self._gemini_client = genai.Client(
                api_key=self.settings.google_ai_api_key,
                http_options=genai_types.HttpOptions(
                    timeout=int(self.settings.extraction_timeout_s * 1000),
                ),
            )
        return self._gemini_client

    def _get_anthropic_client(self) -> Any:
        """Get or create the Anthropic client (direct or Vertex AI)."""
        if self._anthropic_client is None:
            if self.settings.vertex_credentials_path:
                os.environ.setdefault(
                    "GOOGLE_APPLICATION_CREDENTIALS",
                    self.settings.vertex_credentials_path,
                )
                self._anthropic_client = anthropic.AsyncAnthropicVertex(
                    project_id=self.settings.vertex_project_id,
                    region=self.settings.vertex_location,
                )
                self._is_vertex = True
            else:
                self._anthropic_client = anthropic.AsyncAnthropic(
                    api_key=self.settings.anthropic_api_key,
                )
                self._is_vertex = False
        return self._anthropic_client

    # ------------------------------------------------------------------
    # ExtractionCapability
    # ------------------------------------------------------------------

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        schema: dict[str, Any],
        *,
        strict: bool = False,
    ) -> CapabilityResponse:
        text, inline_mime = await self._prepare(data, mime_type)
        system, instruction = self.build_prompts(schema, strict)

        start = time.monotonic()
        if self.provider == "google":
            raw_text, input_tokens, output_tokens = await self._call_gemini(
                system, instruction, text, data, inline_mime,
            )
        else:
            raw_text, input_tokens, output_tokens = await self._call_anthropic(
                system, instruction, text, data, inline_mime,
            )
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"{self.agent_name} {self.provider} call",
            mime_type=mime_type,
            strict=strict,
            inline=text is None,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

        return CapabilityResponse(
            content=self.parse_json(raw_text),
            provider=self.provider,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            characters=len(text) if text is not None else 0,
        )

    async def _prepare(self, data: bytes, mime_type: str) -> tuple[str | None, str | None]:
        """Return (text, None) to send text or (None, mime) to send bytes inline."""
        mime = (mime_type or "").lower()
        if mime == "application/pdf":
            try:
                parsed = await asyncio.to_thread(parse_pdf, data)
            except Exception as e:
                raise PermanentExtractionError(f"PDF could not be opened: {e}") from e
            if parsed.has_text_layer:
                return parsed.full_markdown, None
            logger.info(f"{self.agent_name}: no text layer, sending PDF inline", pages=parsed.page_count)
            return None, mime
        if mime in INLINE_IMAGE_TYPES:
            return None, mime
        if mime.startswith("text/"):
            return data.decode("utf-8", errors="replace"), None
        raise PermanentExtractionError(f"Unsupported mime type: {mime_type}")

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _call_gemini(
        self,
        system: str,
        instruction: str,
        text: str | None,
        data: bytes,
        inline_mime: str | None,
    ) -> tuple[str, int, int]:
        client = self._get_gemini_client()
        document: Any = text if text is not None else genai_types.Part.from_bytes(
            data=data, mime_type=inline_mime,
        )

        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=[instruction, document],
                config=genai_types.GenerateContentConfig(
                    system_instruction=system,
                    temperature=0.0,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as e:
            _raise_for_status(e.code, f"Gemini error {e.code}: {e.message}")
        except genai_errors.UnknownApiResponseError as e:
            raise PermanentExtractionError(f"Gemini response unreadable: {e}", kind="unparseable") from e
        except httpx.TimeoutException as e:
            raise TransientExtractionError(f"Gemini request timed out: {e}", kind="timeout") from e
        except httpx.TransportError as e:
            raise TransientExtractionError(f"Gemini unreachable: {e}", kind="unavailable") from e

        usage = response.usage_metadata
        input_tokens = getattr(usage, "prompt_token_count", 0) or 0
        output_tokens = getattr(usage, "candidates_token_count", 0) or 0
        return response.text or "", input_tokens, output_tokens

    async def _call_anthropic(
        self,
        system: str,
        instruction: str,
        text: str | None,
        data: bytes,
        inline_mime: str | None,
    ) -> tuple[str, int, int]:
        client = self._get_anthropic_client()

        if text is not None:
            document: dict[str, Any] = {"type": "text", "text": text}
        else:
            block_type = "document" if inline_mime == "application/pdf" else "image"
            document = {
                "type": block_type,
                "source": {
                    "type": "base64",
                    "media_type": inline_mime,
                    "data": base64.standard_b64encode(data).decode("ascii"),
                },
            }

        # Prompt caching for direct API
        if not self._is_vertex:
            system_messages: Any = [
                {"type": "text", "text": system, "cache_control": {"type": "ephemeral"}}
            ]
        else:
            system_messages = system

        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=8192,
                system=system_messages,
                messages=[{
                    "role": "user",
                    "content": [document, {"type": "text", "text": instruction}],
                }],
            )
        except anthropic.RateLimitError as e:
            raise TransientExtractionError(f"Anthropic rate limit: {e}", kind="quota_exceeded") from e
        except anthropic.APITimeoutError as e:
            raise TransientExtractionError(f"Anthropic request timed out: {e}", kind="timeout") from e
        except anthropic.APIConnectionError as e:
            raise TransientExtractionError(f"Anthropic unreachable: {e}", kind="unavailable") from e
        except anthropic.APIStatusError as e:
            _raise_for_status(e.status_code, f"Anthropic error {e.status_code}: {e.message}")
        except anthropic.APIResponseValidationError as e:
            raise PermanentExtractionError(f"Anthropic response unreadable: {e}", kind="unparseable") from e
        except anthropic.APIError as e:
            raise PermanentExtractionError(f"Anthropic error: {e}") from e

        usage = response.usage
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        raw_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return raw_text, input_tokens, output_tokens

    # ------------------------------------------------------------------
    # JSON parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_json(raw_text: str) -> dict[str, Any] | str:
        """Parse LLM output as JSON, stripping code fences if present.

        Returns the raw text when it is not a JSON object; the validator
        decides what that means.
        """
        try:
            parsed = json.loads(strip_code_fences(raw_text))
        except json.JSONDecodeError:
            return raw_text
        return parsed if isinstance(parsed, dict) else raw_text
