from dataclasses import dataclass, field, replace
from typing import Any

SCORE_SECTIONS = frozenset(
    {"Score", "score", "FULL_SCORE", "CONDUCTOR_SCORE", "CONDENSED_SCORE"}
)

# Placeholder values a model emits instead of a real instrument name; compared lowercased.
FORBIDDEN_LABELS = frozenset({"null", "none", "n/a", "na", "unknown", "undefined", ""})


def is_forbidden_label(value: str | None) -> bool:
    return value is None or value.strip().lower() in FORBIDDEN_LABELS


@dataclass(frozen=True)
class CuttingInstruction:
    """A page-range-to-instrument mapping used to split a PDF.

    page_start and page_end are 0-indexed and inclusive.
    """

    part_name: str
    instrument: str
    page_start: int
    page_end: int
    section: str = "Other"
    transposition: str = "C"
    part_number: int = 1
    synthesized: bool = False

    @property
    def page_count(self) -> int:
        return self.page_end - self.page_start + 1

    def with_range(self, page_start: int, page_end: int) -> "CuttingInstruction":
        return replace(self, page_start=page_start, page_end=page_end)

    def to_dict(self) -> dict[str, Any]:
        """Serialize with a 1-indexed pageRange, as models and reviewers read it."""
        return {
            "partName": self.part_name,
            "instrument": self.instrument,
            "section": self.section,
            "transposition": self.transposition,
            "partNumber": self.part_number,
            "pageRange": [self.page_start + 1, self.page_end + 1],
        }


@dataclass(frozen=True)
class PartDescriptor:
    """A produced part as persisted in the session's parsed_parts list."""

    part_index: int
    instrument: str
    part_name: str
    section: str
    transposition: str
    part_number: int
    page_start: int
    page_end: int
    storage_key: str
    page_count: int
    display_name: str = ""
    synthesized: bool = False

    @property
    def is_score(self) -> bool:
        return self.section in SCORE_SECTIONS

    def to_dict(self) -> dict[str, Any]:
        return {
            "partIndex": self.part_index,
            "instrument": self.instrument,
            "partName": self.part_name,
            "section": self.section,
            "transposition": self.transposition,
            "partNumber": self.part_number,
            "pageRange": [self.page_start + 1, self.page_end + 1],
            "storageKey": self.storage_key,
            "pageCount": self.page_count,
            "displayName": self.display_name,
            "synthesized": self.synthesized,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PartDescriptor":
        page_range = data.get("pageRange") or [1, 1]
        return cls(
            part_index=int(data.get("partIndex", 0)),
            instrument=str(data.get("instrument", "")),
            part_name=str(data.get("partName", "")),
            section=str(data.get("section", "Other")),
            transposition=str(data.get("transposition", "C")),
            part_number=int(data.get("partNumber", 0)),
            page_start=int(page_range[0]) - 1,
            page_end=int(page_range[1]) - 1,
            storage_key=str(data.get("storageKey", "")),
            page_count=int(data.get("pageCount", 0)),
            display_name=str(data.get("displayName", "")),
            synthesized=bool(data.get("synthesized", False)),
        )

    def to_instruction(self) -> CuttingInstruction:
        return CuttingInstruction(
            part_name=self.part_name,
            instrument=self.instrument,
            page_start=self.page_start,
            page_end=self.page_end,
            section=self.section,
            transposition=self.transposition,
            part_number=self.part_number,
            synthesized=self.synthesized,
        )


@dataclass(frozen=True)
class InstructionSet:
    """Normalized instructions plus what validation had to change."""

    instructions: list[CuttingInstruction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    gaps: list[tuple[int, int]] = field(default_factory=list)
