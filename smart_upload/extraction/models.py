from dataclasses import dataclass, field
from typing import Any

from smart_upload.parts.models import CuttingInstruction

FILE_TYPES = frozenset({"FULL_SCORE", "CONDUCTOR_SCORE", "CONDENSED_SCORE", "PART"})
SCORE_FILE_TYPES = frozenset({"FULL_SCORE", "CONDUCTOR_SCORE", "CONDENSED_SCORE"})
DEFAULT_TITLE = "Unknown Title"


@dataclass(frozen=True)
class ExtractedMetadata:
    """Title-level metadata of a piece."""

    title: str = DEFAULT_TITLE
    subtitle: str | None = None
    composer: str | None = None
    arranger: str | None = None
    publisher: str | None = None
    copyright_year: int | None = None
    ensemble_type: str | None = None
    key_signature: str | None = None
    time_signature: str | None = None
    tempo: str | None = None
    file_type: str = "FULL_SCORE"
    is_multi_part: bool = False
    notes: str | None = None

    @property
    def is_score(self) -> bool:
        return self.file_type in SCORE_FILE_TYPES

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "subtitle": self.subtitle,
            "composer": self.composer,
            "arranger": self.arranger,
            "publisher": self.publisher,
            "copyrightYear": self.copyright_year,
            "ensembleType": self.ensemble_type,
            "keySignature": self.key_signature,
            "timeSignature": self.time_signature,
            "tempo": self.tempo,
            "fileType": self.file_type,
            "isMultiPart": self.is_multi_part,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ExtractedMetadata":
        if not data:
            return cls()
        year = data.get("copyrightYear")
        return cls(
            title=data.get("title") or DEFAULT_TITLE,
            subtitle=data.get("subtitle"),
            composer=data.get("composer"),
            arranger=data.get("arranger"),
            publisher=data.get("publisher"),
            copyright_year=year if isinstance(year, int) else None,
            ensemble_type=data.get("ensembleType"),
            key_signature=data.get("keySignature"),
            time_signature=data.get("timeSignature"),
            tempo=data.get("tempo"),
            file_type=data.get("fileType") or "FULL_SCORE",
            is_multi_part=bool(data.get("isMultiPart", False)),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class ParsedExtraction:
    """A model response that parsed and validated."""

    kind: str = "parsed"
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    instructions: list[CuttingInstruction] = field(default_factory=list)
    confidence: int = 0
    corrections: str | None = None
    model: str = ""


@dataclass(frozen=True)
class MalformedExtraction:
    """A model response that could not be parsed into the expected shape."""

    kind: str = "malformed"
    reason: str = ""
    raw_response: str = ""
    model: str = ""


ExtractionOutcome = ParsedExtraction | MalformedExtraction


@dataclass(frozen=True)
class HeaderLabel:
    """Instrument label read from one page header crop. page_index is 0-based."""

    page_index: int
    label: str | None
    confidence: int = 0
