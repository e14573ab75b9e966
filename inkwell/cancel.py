"""Cooperative cancellation for generations and pipeline runs."""

from inkwell.errors import GenerationCancelled


class CancelToken:
    """A one-shot cancellation signal shared by one generation.

    Cancellation is cooperative: nothing is interrupted mid-step. Connectors
    check the token between stream reads and the pipeline checks it between
    tasks, so at most one more chunk may arrive after ``cancel()``.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Calling it again is a no-op."""
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        """Raise GenerationCancelled if the token has fired."""
        if self._cancelled:
            raise GenerationCancelled()
