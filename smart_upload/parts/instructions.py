"""Normalization of cutting instructions before a split.

All ranges handled here are 0-indexed and inclusive.
"""

from smart_upload.logging.logger import Log
from smart_upload.parts.models import CuttingInstruction, InstructionSet

GAP_PART_NUMBER_BASE = 9900


def normalize_instructions(
    instructions: list[CuttingInstruction],
    total_pages: int,
) -> InstructionSet:
    """Clamp, sort, de-overlap and gap-fill instructions so every page is covered once.

    Instructions whose range is inverted after clamping are dropped. When two
    ranges overlap, the earlier one is truncated to end before the later one
    starts. Uncovered stretches become synthesized "Unlabelled Pages" parts.
    """
    if total_pages <= 0:
        raise ValueError(f"total_pages must be positive, got {total_pages}")

    warnings: list[str] = []
    clamped: list[CuttingInstruction] = []
    for instruction in instructions:
        start = max(0, min(instruction.page_start, total_pages - 1))
        end = max(0, min(instruction.page_end, total_pages - 1))
        if (start, end) != (instruction.page_start, instruction.page_end):
            warnings.append(
                f"Clamped '{instruction.part_name}' from "
                f"{instruction.page_start}-{instruction.page_end} to {start}-{end}"
            )
        if start > end:
            warnings.append(f"Dropped '{instruction.part_name}': start after end")
            continue
        clamped.append(instruction.with_range(start, end))

    de_overlapped = _split_overlapping_ranges(clamped, warnings)
    gaps = detect_gaps(de_overlapped, total_pages)
    gap_parts = build_gap_instructions(gaps)
    for start, end in gaps:
        warnings.append(f"Pages {start + 1}-{end + 1} were not covered by any part")

    merged = sorted(de_overlapped + gap_parts, key=lambda i: i.page_start)
    if warnings:
        Log.debug(f"Cutting instruction fixes: {warnings}")
    return InstructionSet(instructions=merged, warnings=warnings, gaps=gaps)


def detect_gaps(
    instructions: list[CuttingInstruction],
    total_pages: int,
) -> list[tuple[int, int]]:
    """Return contiguous (start, end) page ranges claimed by no instruction."""
    covered: set[int] = set()
    for instruction in instructions:
        covered.update(range(instruction.page_start, instruction.page_end + 1))

    gaps: list[tuple[int, int]] = []
    gap_start: int | None = None
    for page in range(total_pages):
        if page not in covered:
            if gap_start is None:
                gap_start = page
        elif gap_start is not None:
            gaps.append((gap_start, page - 1))
            gap_start = None
    if gap_start is not None:
        gaps.append((gap_start, total_pages - 1))
    return gaps


def build_gap_instructions(gaps: list[tuple[int, int]]) -> list[CuttingInstruction]:
    return [
        CuttingInstruction(
            part_name=f"Unlabelled Pages {start + 1}-{end + 1}",
            instrument="Unknown",
            page_start=start,
            page_end=end,
            section="Other",
            transposition="C",
            part_number=GAP_PART_NUMBER_BASE + i,
            synthesized=True,
        )
        for i, (start, end) in enumerate(gaps)
    ]


def _split_overlapping_ranges(
    instructions: list[CuttingInstruction],
    warnings: list[str],
) -> list[CuttingInstruction]:
    ordered = sorted(enumerate(instructions), key=lambda pair: (pair[1].page_start, pair[0]))
    result: list[CuttingInstruction] = []
    for position, (_, current) in enumerate(ordered):
        nxt = ordered[position + 1][1] if position + 1 < len(ordered) else None
        if nxt is not None and current.page_end >= nxt.page_start:
            warnings.append(
                f"Overlap between '{current.part_name}' and '{nxt.part_name}' "
                f"at page {nxt.page_start + 1}"
            )
            adjusted_end = nxt.page_start - 1
            if adjusted_end >= current.page_start:
                result.append(current.with_range(current.page_start, adjusted_end))
            continue
        result.append(current)
    return result
