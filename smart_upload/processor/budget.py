from smart_upload.logging.logger import Log
from smart_upload.processor.exceptions import BudgetExhaustedError


class SessionBudget:
    """Counts the model calls one job run makes for its session.

    The count lives only as long as the job; a retry or a second pass starts
    from zero. A limit of 0 means unlimited.
    """

    def __init__(self, session_id: str = "", max_calls: int = 0) -> None:
        self.session_id = session_id
        self.max_calls = max_calls
        self.calls = 0

    @property
    def remaining(self) -> int | None:
        if self.max_calls <= 0:
            return None
        return max(0, self.max_calls - self.calls)

    def allows_call(self, reserve: int = 0) -> bool:
        """True if one more call fits while keeping `reserve` calls for later steps."""
        remaining = self.remaining
        return remaining is None or remaining > reserve

    def require_call(self, purpose: str) -> None:
        """Check that one more call for `purpose` fits in the budget.

        Raises:
            BudgetExhaustedError: if no call is left.
        """
        if not self.allows_call():
            raise BudgetExhaustedError(
                f"Model call budget exhausted before {purpose}: "
                f"{self.calls}/{self.max_calls} calls used"
            )

    def record(self) -> None:
        self.calls += 1
        Log.debug(
            f"Session {self.session_id}: model call {self.calls} "
            f"(remaining {'unlimited' if self.remaining is None else self.remaining})"
        )
