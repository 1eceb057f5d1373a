from pathlib import Path

from smart_upload.extraction.exceptions import ExtractionError

PROMPT_VERSION = "2.0.0"

_DEFAULT_PROMPT_DIR = Path(__file__).parent / "prompts"


def load_prompt_template(name: str, prompt_dir: Path | None = None) -> str:
    """Load a bundled prompt template or schema by file name.

    Args:
        name: File name inside the prompt directory, e.g. "vision_user.txt".
        prompt_dir: Directory to read from. Defaults to the bundled prompts/.

    Returns:
        The raw template string with placeholders.

    Raises:
        ExtractionError: if the file cannot be read.
    """
    path = (prompt_dir or _DEFAULT_PROMPT_DIR) / name
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ExtractionError(f"Failed to load prompt template {name}: {exc}") from exc
