"""DealScope Result Validator — turns a raw capability response into typed data.

  raw (dict | JSON text) -> strip fences -> sanitize -> shape checks
                         -> ExtractionPayload + confidence - missing-section penalties

Unparseable text is final (no re-ask can fix a transport-level mess);
parseable-but-wrong-shaped output is MALFORMED and earns one strict re-ask.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from dealscope.modules.analysis.agent_schemas import ErrorKind, ValidationOutcome
from dealscope.modules.analysis.agents.sanitizer import (
    parse_number,
    sanitize_extraction_json,
    strip_code_fences,
)
from dealscope.modules.analysis.schemas import (
    OPTIONAL_SECTIONS,
    REQUIRED_SECTIONS,
    ExtractionPayload,
    Outcome,
)

logger = structlog.get_logger()

_KNOWN_SECTIONS = REQUIRED_SECTIONS + OPTIONAL_SECTIONS

# Envelope keys a capability may wrap its fields in
_ENVELOPE_KEYS = ("fields", "extracted_data", "data")


def estimate_confidence(characters: int, raw_size: int) -> float:
    """Heuristic confidence when the capability does not report one.

    More readable text, and more text per byte of payload, means the
    document was read properly rather than guessed from a scan.
    """
    confidence = 50.0
    if characters > 1000:
        confidence += 20
    if characters > 5000:
        confidence += 10
    if raw_size > 0:
        ratio = characters / raw_size
        if ratio > 0.005:
            confidence += 15
        if ratio > 0.01:
            confidence += 10
    return min(confidence, 95.0)


def classify_outcome(error_kind: ErrorKind | None) -> Outcome:
    """Map the last attempt's error kind to a per-document outcome."""
    if error_kind is None:
        return "success"
    if error_kind.is_transient:
        return "transient_exhausted"
    return "permanent_failure"


class ResultValidator:
    """Parses and checks one raw extraction response."""

    agent_name = "Validator"

    def __init__(self, missing_section_penalty: float = 15) -> None:
        self.missing_section_penalty = missing_section_penalty

    def validate(
        self,
        content: dict[str, Any] | str,
        *,
        characters: int = 0,
        raw_size: int = 0,
    ) -> ValidationOutcome:
        # --- Parse ---
        if isinstance(content, str):
            try:
                content = json.loads(strip_code_fences(content))
            except (json.JSONDecodeError, ValueError) as e:
                return ValidationOutcome(
                    error_kind=ErrorKind.UNPARSEABLE,
                    error=f"Response is not valid JSON: {e}",
                )

        if not isinstance(content, dict):
            return self._malformed(f"Expected a JSON object, got {type(content).__name__}")

        data, reported_confidence = self._unwrap(content)

        # --- Sanitize + shape checks ---
        data = sanitize_extraction_json(data)
        present = [s for s in _KNOWN_SECTIONS if s in data]
        if not present:
            return self._malformed("Response contains no recognised section")

        for section in present:
            value = data[section]
            if value is None:
                continue
            expected = list if section == "risks" else dict
            if not isinstance(value, expected):
                return self._malformed(
                    f"Section '{section}' must be a {expected.__name__}, got {type(value).__name__}"
                )

        try:
            payload = ExtractionPayload.model_validate(data)
        except PydanticValidationError as e:
            return self._malformed(f"Schema validation failed: {e.error_count()} error(s)")

        # --- Confidence ---
        if reported_confidence is None:
            confidence = estimate_confidence(characters, raw_size)
        else:
            confidence = reported_confidence

        missing = [s for s in REQUIRED_SECTIONS if getattr(payload, s) is None]
        confidence -= self.missing_section_penalty * len(missing)
        confidence = max(0.0, min(100.0, confidence))

        warnings = []
        if missing:
            warnings.append(f"Missing sections: {', '.join(missing)}")

        logger.debug(
            "Validator: response accepted",
            sections=present,
            missing=missing,
            confidence=confidence,
        )

        return ValidationOutcome(
            payload=payload,
            confidence=confidence,
            missing_sections=missing,
            warnings=warnings,
        )

    @staticmethod
    def _unwrap(content: dict[str, Any]) -> tuple[dict[str, Any], float | None]:
        """Split an optional envelope into (fields, reported confidence)."""
        data = content
        for key in _ENVELOPE_KEYS:
            if isinstance(content.get(key), dict):
                data = content[key]
                break

        raw_confidence = content.get("confidence", data.get("confidence"))
        data = {k: v for k, v in data.items() if k != "confidence"}
        return data, parse_number(raw_confidence)

    @staticmethod
    def _malformed(message: str) -> ValidationOutcome:
        logger.info("Validator: malformed response", error=message)
        return ValidationOutcome(error_kind=ErrorKind.MALFORMED, error=message)
