"""Deterministic part segmentation from page header text.

No model is involved: headers are matched against known instrument patterns,
gaps are filled from neighbouring pages, and runs of equal labels become parts.
"""

import re
from dataclasses import replace

from smart_upload.logging.logger import Log
from smart_upload.parts.models import CuttingInstruction
from smart_upload.parts.naming import normalize_instrument_label
from smart_upload.pdf.models import PageHeader
from smart_upload.segmentation.models import PageLabel, Segment, SegmentationResult

PATTERN_CONFIDENCE = 80
NORMALIZER_CONFIDENCE = 65
FORWARD_FILL_CONFIDENCE = 40
BLIP_CONFIDENCE_CAP = 60
BACK_FILL_CONFIDENCE = 30
TRUSTED_PAGE_CONFIDENCE = 70
UNKNOWN_PART_LABEL = "Unknown Part"

_CHAIR_1 = r"\b(1st|first|1)\b.{0,20}"
_CHAIR_2 = r"\b(2nd|second|2)\b.{0,20}"
_CHAIR_3 = r"\b(3rd|third|3)\b.{0,20}"
_CHAIR_4 = r"\b(4th|fourth|4)\b.{0,20}"

# Specific patterns first; the first match wins.
PART_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(_CHAIR_1 + r"(clarinet|cl\.?)\b", re.I), "1st Bb Clarinet"),
    (re.compile(_CHAIR_2 + r"(clarinet|cl\.?)\b", re.I), "2nd Bb Clarinet"),
    (re.compile(_CHAIR_3 + r"(clarinet|cl\.?)\b", re.I), "3rd Bb Clarinet"),
    (re.compile(r"\b(solo|solo\s+bb?)\b.{0,10}(clarinet|cl\.?)\b", re.I), "Solo Bb Clarinet"),
    (re.compile(r"\bbass\s+(clarinet|cl\.?)\b", re.I), "Bass Clarinet"),
    (re.compile(r"\beb?\s+(clarinet|cl\.?)\b", re.I), "Eb Clarinet"),
    (re.compile(r"\bclarinet\b", re.I), "Bb Clarinet"),
    (re.compile(r"\bpicco?lo\b", re.I), "Piccolo"),
    (re.compile(_CHAIR_1 + r"flute\b", re.I), "1st Flute"),
    (re.compile(_CHAIR_2 + r"flute\b", re.I), "2nd Flute"),
    (re.compile(r"\bflute\b", re.I), "Flute"),
    (re.compile(r"\boboe\b", re.I), "Oboe"),
    (re.compile(r"\bbassoon\b", re.I), "Bassoon"),
    (re.compile(_CHAIR_1 + r"(alto|a\.?\s*sax)", re.I), "1st Eb Alto Saxophone"),
    (re.compile(_CHAIR_2 + r"(alto|a\.?\s*sax)", re.I), "2nd Eb Alto Saxophone"),
    (re.compile(r"\balto\s+sax", re.I), "Eb Alto Saxophone"),
    (re.compile(r"\btenor\s+sax", re.I), "Bb Tenor Saxophone"),
    (re.compile(r"\bbari(tone)?\s+sax", re.I), "Eb Baritone Saxophone"),
    (re.compile(r"\bsax(ophone)?\b", re.I), "Saxophone"),
    (re.compile(_CHAIR_1 + r"trumpet", re.I), "1st Bb Trumpet"),
    (re.compile(_CHAIR_2 + r"trumpet", re.I), "2nd Bb Trumpet"),
    (re.compile(_CHAIR_3 + r"trumpet", re.I), "3rd Bb Trumpet"),
    (re.compile(r"\btrumpet\b", re.I), "Bb Trumpet"),
    (re.compile(r"\bcornet\b", re.I), "Bb Cornet"),
    (re.compile(_CHAIR_1 + r"(f\s*)?horn", re.I), "1st F Horn"),
    (re.compile(_CHAIR_2 + r"(f\s*)?horn", re.I), "2nd F Horn"),
    (re.compile(_CHAIR_3 + r"(f\s*)?horn", re.I), "3rd F Horn"),
    (re.compile(_CHAIR_4 + r"(f\s*)?horn", re.I), "4th F Horn"),
    (re.compile(r"\b(french\s+)?horn\b", re.I), "F Horn"),
    (re.compile(_CHAIR_1 + r"trombone", re.I), "1st Trombone"),
    (re.compile(_CHAIR_2 + r"trombone", re.I), "2nd Trombone"),
    (re.compile(_CHAIR_3 + r"trombone", re.I), "3rd Trombone"),
    (re.compile(r"\bbass\s+trombone", re.I), "Bass Trombone"),
    (re.compile(r"\btrombone\b", re.I), "Trombone"),
    (re.compile(r"\beuphonium\b", re.I), "Euphonium"),
    (re.compile(r"\btuba\b", re.I), "Tuba"),
    (re.compile(r"\bbaritone\b", re.I), "Baritone"),
    (re.compile(r"\btimpani\b", re.I), "Timpani"),
    (re.compile(r"\bsnare\b", re.I), "Snare Drum"),
    (re.compile(r"\bbass\s+drum\b", re.I), "Bass Drum"),
    (re.compile(r"\bbass\b", re.I), "String Bass"),
    (re.compile(r"\bpercussion\b", re.I), "Percussion"),
    (re.compile(r"\bmarimba\b", re.I), "Marimba"),
    (re.compile(r"\bxyloph", re.I), "Xylophone"),
    (re.compile(r"\bvibraphone\b", re.I), "Vibraphone"),
    (re.compile(r"\bmallet", re.I), "Mallet Percussion"),
    (re.compile(r"\bpiano\b", re.I), "Piano"),
    (re.compile(r"\bharp\b", re.I), "Harp"),
    (re.compile(r"\bconductor\b", re.I), "Conductor Score"),
    (re.compile(r"\bfull\s+score\b", re.I), "Full Score"),
    (re.compile(r"\bcondensed\s+score\b", re.I), "Condensed Score"),
]


def label_from_header(header_text: str) -> tuple[str, int] | None:
    """Map raw header text to (canonical label, confidence), or None if unrecognized."""
    text = header_text.strip()
    if len(text) < 3:
        return None
    for pattern, label in PART_PATTERNS:
        if pattern.search(text):
            return label, PATTERN_CONFIDENCE
    normalized = normalize_instrument_label(text)
    if normalized.section != "Other":
        return normalized.instrument, NORMALIZER_CONFIDENCE
    return None


class DeterministicSegmenter:
    """Groups contiguous pages into parts using header-text labels."""

    def segment(
        self,
        page_headers: list[PageHeader],
        total_pages: int,
        coverage: float,
    ) -> SegmentationResult:
        """Segment a document from its text-layer headers.

        Returns an empty result with confidence 0 when there is no text layer
        or no header can be recognized.
        """
        if coverage <= 0 or not page_headers:
            return SegmentationResult(from_text_layer=True)

        labels: list[PageLabel] = []
        for header in page_headers:
            match = label_from_header(header.header_text or header.full_text)
            labels.append(
                PageLabel(
                    page_index=header.page_index,
                    label=match[0] if match else "",
                    confidence=match[1] if match else 0,
                    raw_header=header.header_text,
                )
            )
        return self._group(labels, total_pages, from_text_layer=True)

    def segment_from_labels(
        self,
        page_labels: list[PageLabel],
        total_pages: int,
    ) -> SegmentationResult:
        """Segment from labels supplied by a header-labelling model pass."""
        return self._group(list(page_labels), total_pages, from_text_layer=False)

    def _group(
        self,
        labels: list[PageLabel],
        total_pages: int,
        *,
        from_text_layer: bool,
    ) -> SegmentationResult:
        labels = sorted(labels, key=lambda p: p.page_index)
        if not any(p.label for p in labels):
            return SegmentationResult(from_text_layer=from_text_layer)

        labels = _forward_fill(labels)
        labels = _smooth_blips(labels)
        labels = _back_fill(labels)
        labels = _add_unscanned_pages(labels, total_pages)

        segments = _group_runs(labels)
        instructions = [
            _instruction_for(segment, number)
            for number, segment in enumerate(segments, start=1)
        ]
        trusted = sum(1 for p in labels if p.confidence >= TRUSTED_PAGE_CONFIDENCE)
        confidence = round(trusted / len(labels) * 100) if labels else 0

        Log.info(
            f"Segmentation found {len(segments)} segments over {total_pages} pages "
            f"(confidence {confidence}, text layer: {from_text_layer})"
        )
        return SegmentationResult(
            segments=segments,
            instructions=instructions,
            page_labels=labels,
            confidence=confidence,
            from_text_layer=from_text_layer,
        )


def _forward_fill(labels: list[PageLabel]) -> list[PageLabel]:
    filled: list[PageLabel] = []
    last = ""
    for page in labels:
        if page.label:
            last = page.label
            filled.append(page)
        elif last:
            filled.append(replace(page, label=last, confidence=FORWARD_FILL_CONFIDENCE))
        else:
            filled.append(page)
    return filled


def _smooth_blips(labels: list[PageLabel]) -> list[PageLabel]:
    """Relabel a single page whose neighbours on both sides agree with each other."""
    if len(labels) <= 2:
        return labels
    smoothed = list(labels)
    for i in range(1, len(smoothed) - 1):
        prev, curr, nxt = smoothed[i - 1], smoothed[i], smoothed[i + 1]
        if prev.label and prev.label == nxt.label and curr.label != prev.label:
            smoothed[i] = replace(
                curr,
                label=prev.label,
                confidence=min(curr.confidence, BLIP_CONFIDENCE_CAP),
            )
    return smoothed


def _back_fill(labels: list[PageLabel]) -> list[PageLabel]:
    first = next((p.label for p in labels if p.label), "")
    filled: list[PageLabel] = []
    leading = True
    for page in labels:
        if leading and not page.label:
            filled.append(replace(page, label=first, confidence=BACK_FILL_CONFIDENCE))
        else:
            leading = False
            filled.append(page)
    return filled


def _add_unscanned_pages(labels: list[PageLabel], total_pages: int) -> list[PageLabel]:
    scanned = {p.page_index for p in labels}
    missing = [
        PageLabel(page_index=i, label=UNKNOWN_PART_LABEL, confidence=0)
        for i in range(total_pages)
        if i not in scanned
    ]
    if not missing:
        return labels
    return sorted(labels + missing, key=lambda p: p.page_index)


def _group_runs(labels: list[PageLabel]) -> list[Segment]:
    segments: list[Segment] = []
    start = labels[0]
    previous = labels[0]
    for page in labels[1:]:
        if page.label != start.label or page.page_index != previous.page_index + 1:
            segments.append(Segment(start.label, start.page_index, previous.page_index))
            start = page
        previous = page
    segments.append(Segment(start.label, start.page_index, previous.page_index))
    return segments


def _instruction_for(segment: Segment, part_number: int) -> CuttingInstruction:
    normalized = normalize_instrument_label(segment.label)
    return CuttingInstruction(
        part_name=segment.label,
        instrument=segment.label,
        page_start=segment.page_start,
        page_end=segment.page_end,
        section=normalized.section,
        transposition=normalized.transposition,
        part_number=part_number,
    )
