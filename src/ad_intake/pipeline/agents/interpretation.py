"""Interpretation of raw provider answers into extraction outcomes."""

from __future__ import annotations

import json
import re
from typing import Any

from ad_intake.pipeline.models import ExtractionOutcome, JobStatus

REJECT_TOKEN = "no"
REJECT_MESSAGE = "No real estate advertisement found"

# Short provider keys -> stable output field names.
FIELD_MAP: dict[str, str] = {
    "tp": "property_type",
    "op": "operation_type",
    "pr": "price",
    "cu": "currency",
    "ct": "city",
    "nb": "neighborhood",
    "ad": "address",
    "ar": "area_sqm",
    "rm": "rooms",
    "bd": "bedrooms",
    "bt": "bathrooms",
    "fl": "floor",
    "pk": "parking",
    "fu": "furnished",
    "cn": "contact_name",
    "ph": "contact_phone",
}

_CODE_FENCE_RE = re.compile(r"```json|```")


def strip_code_fences(content: str) -> str:
    """Drop markdown code fences and surrounding whitespace."""

    return _CODE_FENCE_RE.sub("", content).strip()


def map_fields(element: Any, *, description: str) -> dict[str, Any]:
    """Remap one provider element; keys absent from the element are omitted."""

    mapped: dict[str, Any] = {"description": description}
    if not isinstance(element, dict):
        return mapped
    for short_key, field_name in FIELD_MAP.items():
        if short_key in element:
            mapped[field_name] = element[short_key]
    return mapped


def interpret_response(
    content: str,
    *,
    original_text: str,
    provider_label: str,
) -> ExtractionOutcome:
    """Turn a raw provider answer into a business outcome.

    Empty answers and unparseable JSON are failures, the literal ``no`` is a
    rejection, and a JSON array becomes a list of mapped records.
    """

    if not content:
        return ExtractionOutcome(
            status=JobStatus.FAILED,
            message=f"Empty response from {provider_label}",
        )
    if content.lower() == REJECT_TOKEN:
        return ExtractionOutcome(status=JobStatus.REJECT, message=REJECT_MESSAGE)

    try:
        parsed = json.loads(content, parse_constant=_reject_constant)
    except ValueError as error:
        return _parse_failure(str(error), provider_label=provider_label)
    if not isinstance(parsed, list):
        return _parse_failure(
            f"expected a JSON array, got {type(parsed).__name__}",
            provider_label=provider_label,
        )

    description = original_text.strip()
    return ExtractionOutcome(
        status=JobStatus.SUCCESS,
        data=[map_fields(element, description=description) for element in parsed],
    )


def _reject_constant(token: str) -> Any:
    raise ValueError(f"invalid JSON token {token!r}")


def _parse_failure(reason: str, *, provider_label: str) -> ExtractionOutcome:
    return ExtractionOutcome(
        status=JobStatus.FAILED,
        message=f"Could not parse JSON response: {reason}",
        parse_error=f"{provider_label} JSON parse error: {reason}",
    )
