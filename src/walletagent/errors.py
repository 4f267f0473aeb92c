"""Exceptions raised by the wallet agent client."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from walletagent.turn.models import Turn


class WalletAgentError(Exception):
    """Base class for all wallet agent errors."""


class TransportError(WalletAgentError):
    """The stream request could not be opened.

    Raised for refused connections and for non-success status codes
    received before any byte of the stream body.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamTimeoutError(WalletAgentError):
    """The watchdog saw no traffic for ``timeout`` seconds and aborted the turn."""

    def __init__(self, timeout: float, turn: Turn | None = None) -> None:
        super().__init__(f"No stream activity for {timeout:g} seconds")
        self.timeout = timeout
        self.turn = turn


class ConcurrentStreamError(WalletAgentError):
    """A turn was started while another stream is still active in the session."""


class NoSessionError(WalletAgentError):
    """A turn was started before a session id was attached."""


class BackendError(WalletAgentError):
    """A session or auth collaborator call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
