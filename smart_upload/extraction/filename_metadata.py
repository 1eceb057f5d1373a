import re
from pathlib import PurePath

from smart_upload.extraction.models import DEFAULT_TITLE, ExtractedMetadata


def metadata_from_filename(file_name: str, *, is_multi_part: bool = False) -> ExtractedMetadata:
    """Best-effort metadata from an upload's file name.

    "Sousa - The Stars and Stripes Forever.pdf" yields composer "Sousa" and
    the title; anything else becomes the title alone.
    """
    stem = PurePath(file_name or "").stem
    text = re.sub(r"[_]+", " ", stem)
    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        return ExtractedMetadata(title=DEFAULT_TITLE, is_multi_part=is_multi_part)

    composer: str | None = None
    title = text
    parts = re.split(r"\s+-\s+", text, maxsplit=1)
    if len(parts) == 2 and parts[0] and parts[1]:
        composer, title = parts[0].strip(), parts[1].strip()

    return ExtractedMetadata(
        title=title or DEFAULT_TITLE,
        composer=composer,
        file_type="PART" if is_multi_part else "FULL_SCORE",
        is_multi_part=is_multi_part,
    )
