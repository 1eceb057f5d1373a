from types import TracebackType

from smart_upload.logging.logger import Log
from smart_upload.pdf.models import PageImage


class RenderCache:
    """Rendered images for one session, owned by a single job run.

    Use as a context manager; the cache is emptied on exit whether the run
    succeeded or failed. release() may be called any number of times.
    """

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self._images: dict[tuple[str, int, int], PageImage] = {}
        self._released = False

    def __enter__(self) -> "RenderCache":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self._images)

    @property
    def released(self) -> bool:
        return self._released

    def get(self, kind: str, page_index: int, dpi: int) -> PageImage | None:
        return self._images.get((kind, page_index, dpi))

    def put(self, kind: str, page_index: int, dpi: int, image: PageImage) -> None:
        if self._released:
            raise RuntimeError(f"Render cache for session {self.session_id} already released")
        self._images[(kind, page_index, dpi)] = image

    def release(self) -> None:
        if self._released:
            return
        count = len(self)
        self._images.clear()
        self._released = True
        Log.debug(f"Released render cache for session {self.session_id} ({count} images)")
