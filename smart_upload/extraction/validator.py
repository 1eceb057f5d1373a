"""Validates parsed model JSON and builds typed extraction results.

The model is allowed to be sloppy about optional fields; those are coerced to
defaults. Only a response that is not a JSON object (or, for header labels,
not a list of entries) is rejected.
"""

from typing import Any

from smart_upload.extraction.exceptions import ExtractionValidationError
from smart_upload.extraction.models import (
    DEFAULT_TITLE,
    FILE_TYPES,
    ExtractedMetadata,
    HeaderLabel,
    ParsedExtraction,
)
from smart_upload.logging.logger import Log
from smart_upload.parts.models import CuttingInstruction, is_forbidden_label


def validate_and_build(
    data: Any,
    *,
    confidence_keys: tuple[str, ...] = ("confidenceScore",),
    model: str = "",
) -> ParsedExtraction:
    """Build a ParsedExtraction from a parsed vision response.

    Page ranges in the response are 1-indexed; the returned instructions are
    0-indexed. Range clamping against the document happens at split time.

    Raises:
        ExtractionValidationError: if data is not a JSON object.
    """
    if not isinstance(data, dict):
        raise ExtractionValidationError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    confidence = 0
    for key in confidence_keys:
        if key in data:
            confidence = normalize_confidence(data[key])
            break
    corrections = data.get("corrections")
    return ParsedExtraction(
        metadata=_build_metadata(data),
        instructions=_build_instructions(data.get("cuttingInstructions")),
        confidence=confidence,
        corrections=corrections if isinstance(corrections, str) else None,
        model=model,
    )


def validate_header_labels(data: Any) -> list[HeaderLabel]:
    """Build header labels from [{"page", "label", "confidence"}] or {"labels": [...]}.

    Placeholder strings such as "null" or "unknown" are turned into None.

    Raises:
        ExtractionValidationError: if no list of label entries is present.
    """
    entries = data.get("labels") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ExtractionValidationError("Header label response must contain a list of labels")
    labels: list[HeaderLabel] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        page = _as_int(entry.get("page"))
        if page is None or page < 1:
            continue
        raw_label = entry.get("label")
        label = raw_label.strip() if isinstance(raw_label, str) else None
        if is_forbidden_label(label):
            label = None
        labels.append(
            HeaderLabel(
                page_index=page - 1,
                label=label,
                confidence=normalize_confidence(entry.get("confidence")) if label else 0,
            )
        )
    return labels


def normalize_confidence(value: Any) -> int:
    """Coerce a confidence to an integer 0-100. Fractions in (0, 1) are read as ratios."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return 0
    if not isinstance(value, (int, float)):
        return 0
    number = float(value)
    if 0 < number < 1:
        number *= 100
    return int(round(max(0.0, min(100.0, number))))


def _build_metadata(data: dict[str, Any]) -> ExtractedMetadata:
    file_type = data.get("fileType")
    if not isinstance(file_type, str) or file_type.upper() not in FILE_TYPES:
        file_type = "FULL_SCORE"
    return ExtractedMetadata(
        title=_as_str(data.get("title")) or DEFAULT_TITLE,
        subtitle=_as_str(data.get("subtitle")),
        composer=_as_str(data.get("composer")),
        arranger=_as_str(data.get("arranger")),
        publisher=_as_str(data.get("publisher")),
        copyright_year=_as_int(data.get("copyrightYear")),
        ensemble_type=_as_str(data.get("ensembleType")),
        key_signature=_as_str(data.get("keySignature")),
        time_signature=_as_str(data.get("timeSignature")),
        tempo=_as_str(data.get("tempo")),
        file_type=file_type.upper(),
        is_multi_part=data.get("isMultiPart") is True,
        notes=_as_str(data.get("notes")),
    )


def _build_instructions(raw: Any) -> list[CuttingInstruction]:
    if not isinstance(raw, list):
        return []
    instructions: list[CuttingInstruction] = []
    for index, item in enumerate(raw):
        instruction = _build_instruction(item, index)
        if instruction is not None:
            instructions.append(instruction)
    return instructions


def _build_instruction(raw: Any, index: int) -> CuttingInstruction | None:
    if not isinstance(raw, dict):
        Log.warning(f"Cutting instruction {index} ignored: not an object")
        return None
    bounds = _page_bounds(raw)
    if bounds is None:
        Log.warning(f"Cutting instruction {index} ignored: missing or invalid page range")
        return None
    start, end = bounds
    part_name = raw.get("partName")
    instrument = raw.get("instrument")
    if not isinstance(part_name, str):
        part_name = instrument if isinstance(instrument, str) else ""
    if not isinstance(instrument, str):
        instrument = part_name
    part_number = _as_int(raw.get("partNumber"))
    return CuttingInstruction(
        part_name=part_name.strip(),
        instrument=instrument.strip(),
        page_start=max(0, start - 1),
        page_end=max(0, end - 1),
        section=_as_str(raw.get("section")) or "Other",
        transposition=_as_str(raw.get("transposition")) or "C",
        part_number=part_number if part_number is not None else index + 1,
    )


def _page_bounds(raw: dict[str, Any]) -> tuple[int, int] | None:
    page_range = raw.get("pageRange")
    if isinstance(page_range, list) and len(page_range) >= 2:
        start, end = _as_int(page_range[0]), _as_int(page_range[1])
    else:
        start, end = _as_int(raw.get("pageStart")), _as_int(raw.get("pageEnd"))
    if start is None or end is None:
        return None
    return start, end


def _as_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None
