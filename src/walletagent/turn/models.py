"""Immutable views of sessions, turns, and their parts.

These are the only objects handed to callers. The state machine keeps its
own mutable working state and builds fresh snapshots on demand, so a caller
can hold on to a ``Turn`` without it changing underneath them.
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field


class TurnState(enum.Enum):
    """Lifecycle states of a single turn."""

    IDLE = "idle"
    THINKING = "thinking"
    STREAMING_ANSWER = "streaming_answer"
    FINALIZED = "finalized"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        """True once the turn can no longer change."""
        return self in (TurnState.FINALIZED, TurnState.ABORTED)


class ToolState(enum.Enum):
    """Lifecycle states of a tool invocation."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class NoticeKind(enum.Enum):
    """Kinds of system notices attached to a turn."""

    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    SYSTEM = "system"


@dataclass(frozen=True)
class Notice:
    """A synthetic message shown alongside a turn (errors, cancellation)."""

    kind: NoticeKind
    text: str


@dataclass(frozen=True)
class GeneratedImage:
    """Descriptor of an image produced by the agent during a turn."""

    url: str
    prompt: str | None = None
    style: str | None = None
    service: str | None = None
    model: str | None = None
    generated_at: str | None = None


@dataclass(frozen=True)
class ArtifactBundle:
    """Side artifacts collected over one turn."""

    tx_hashes: tuple[str, ...] = ()
    citations: tuple[str, ...] = ()
    image: GeneratedImage | None = None

    @property
    def empty(self) -> bool:
        return not (self.tx_hashes or self.citations or self.image)


@dataclass(frozen=True)
class ToolCallRecord:
    """One tool invocation seen during a turn.

    ``key`` combines the tool name with a per-turn sequence number so that
    repeated calls to the same tool stay distinguishable.
    """

    tool: str
    sequence: int
    state: ToolState = ToolState.RUNNING
    progress: tuple[str, ...] = ()
    reasoning_before: str | None = None
    error: str | None = None

    @property
    def key(self) -> str:
        return f"{self.tool}_{self.sequence}"


@dataclass(frozen=True)
class ThinkingRecord:
    """Reasoning and tool activity leading up to an answer."""

    tool_calls: tuple[ToolCallRecord, ...] = ()
    reasoning: str = ""
    notes: tuple[str, ...] = ()
    active: bool = False


@dataclass(frozen=True)
class AnswerMessage:
    """The finalized assistant answer for a turn."""

    text: str
    artifacts: ArtifactBundle = field(default_factory=ArtifactBundle)
    requires_confirmation: bool = False
    confirmation_question: str | None = None
    created_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


@dataclass(frozen=True)
class Turn:
    """One prompt/response exchange.

    ``streaming_text`` holds the partial answer accumulated so far; it stays
    populated on aborted turns so a caller can still show what arrived.
    ``fallback_completion`` is True when the answer was built from buffered
    tokens because the stream closed without an explicit final answer.
    """

    turn_id: str
    prompt: str
    created_at: datetime.datetime
    state: TurnState = TurnState.IDLE
    thinking: ThinkingRecord = field(default_factory=ThinkingRecord)
    answer: AnswerMessage | None = None
    fallback_completion: bool = False
    streaming_text: str = ""
    notices: tuple[Notice, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


@dataclass(frozen=True)
class Session:
    """Snapshot of a conversation and its turns."""

    session_id: str | None
    wallet_address: str | None
    chain_id: int
    turns: tuple[Turn, ...] = ()
    active_turn_id: str | None = None

    @property
    def streaming(self) -> bool:
        return self.active_turn_id is not None
