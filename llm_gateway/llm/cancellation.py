"""Cooperative cancellation for streaming sessions."""

from __future__ import annotations

from .exceptions import StreamCancelledError


class CancellationToken:
    """
    A cooperative cancellation flag.

    Sessions poll the token before sending the request and after every
    chunk; nothing is interrupted mid-await.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation; later calls keep the first reason."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise StreamCancelledError(self._reason or "stream cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, reason={self._reason!r})"
