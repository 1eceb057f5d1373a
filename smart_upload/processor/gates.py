"""Quality gates deciding whether a parsed session may be committed without review.

Each gate is a pure predicate over a frozen GateInput. All gates are evaluated
so reviewers see every reason at once.
"""

from collections.abc import Callable
from dataclasses import dataclass

from smart_upload.config.settings import Settings
from smart_upload.parts.models import PartDescriptor, is_forbidden_label
from smart_upload.processor.models import UploadSession

SEGMENTATION_GATE_MIN_CONFIDENCE = 70
PLAUSIBLE_PART_COUNT_MIN_PAGES = 10


@dataclass(frozen=True)
class GateInput:
    parts: tuple[PartDescriptor, ...]
    is_multi_part: bool
    total_pages: int
    segmentation_confidence: int | None
    final_confidence: int
    max_pages_per_part: int
    autonomous_threshold: int

    @property
    def segmentation_attempted(self) -> bool:
        return self.segmentation_confidence is not None


@dataclass(frozen=True)
class GateResult:
    name: str
    passed: bool
    reason: str = ""


def forbidden_labels_gate(gate_input: GateInput) -> GateResult:
    bad = [
        p.part_index
        for p in gate_input.parts
        if is_forbidden_label(p.instrument) or is_forbidden_label(p.part_name)
    ]
    if bad:
        return GateResult("forbidden_labels", False, f"Placeholder labels on parts {bad}")
    return GateResult("forbidden_labels", True)


def oversized_part_gate(gate_input: GateInput) -> GateResult:
    oversized = [
        p.part_index
        for p in gate_input.parts
        if not p.is_score and p.page_count > gate_input.max_pages_per_part
    ]
    if oversized:
        return GateResult(
            "oversized_part",
            False,
            f"Parts {oversized} exceed {gate_input.max_pages_per_part} pages",
        )
    return GateResult("oversized_part", True)


def implausible_part_count_gate(gate_input: GateInput) -> GateResult:
    if (
        gate_input.is_multi_part
        and gate_input.total_pages > PLAUSIBLE_PART_COUNT_MIN_PAGES
        and len(gate_input.parts) < 2
    ):
        return GateResult(
            "implausible_part_count",
            False,
            f"Multi-part document of {gate_input.total_pages} pages "
            f"produced {len(gate_input.parts)} part(s)",
        )
    return GateResult("implausible_part_count", True)


def segmentation_confidence_gate(gate_input: GateInput) -> GateResult:
    if (
        gate_input.segmentation_attempted
        and gate_input.segmentation_confidence < SEGMENTATION_GATE_MIN_CONFIDENCE
    ):
        return GateResult(
            "segmentation_confidence",
            False,
            f"Segmentation confidence {gate_input.segmentation_confidence} "
            f"< {SEGMENTATION_GATE_MIN_CONFIDENCE}",
        )
    return GateResult("segmentation_confidence", True)


def autonomous_threshold_gate(gate_input: GateInput) -> GateResult:
    if gate_input.final_confidence < gate_input.autonomous_threshold:
        return GateResult(
            "autonomous_threshold",
            False,
            f"Final confidence {gate_input.final_confidence} "
            f"< {gate_input.autonomous_threshold}",
        )
    return GateResult("autonomous_threshold", True)


GATES: tuple[Callable[[GateInput], GateResult], ...] = (
    forbidden_labels_gate,
    oversized_part_gate,
    implausible_part_count_gate,
    segmentation_confidence_gate,
    autonomous_threshold_gate,
)


def evaluate_gates(gate_input: GateInput) -> list[GateResult]:
    return [gate(gate_input) for gate in GATES]


def all_passed(results: list[GateResult]) -> bool:
    return all(result.passed for result in results)


def gate_input_from_session(session: UploadSession, settings: Settings) -> GateInput:
    """Build gate input from persisted fields only."""
    return GateInput(
        parts=tuple(session.parsed_parts),
        is_multi_part=bool(session.extracted_metadata.get("isMultiPart", False)),
        total_pages=session.total_pages or 0,
        segmentation_confidence=session.segmentation_confidence,
        final_confidence=session.final_confidence or 0,
        max_pages_per_part=settings.max_pages_per_part,
        autonomous_threshold=settings.autonomous_approval_threshold,
    )
