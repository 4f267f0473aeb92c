from .errors import (
    BackendError,
    ConcurrentStreamError,
    NoSessionError,
    StreamTimeoutError,
    TransportError,
    WalletAgentError,
)
from .session import SessionManager, TurnHandle, TurnListener
from .turn.models import AnswerMessage, Session, Turn, TurnState

__all__ = [
    "SessionManager",
    "TurnHandle",
    "TurnListener",
    "Session",
    "Turn",
    "TurnState",
    "AnswerMessage",
    "WalletAgentError",
    "TransportError",
    "StreamTimeoutError",
    "ConcurrentStreamError",
    "NoSessionError",
    "BackendError",
]
__version__ = "0.1.0"
