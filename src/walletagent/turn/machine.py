"""Turn state machine: rebuilds one conversational turn from stream events."""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable

from walletagent.stream.artifacts import ArtifactAccumulator
from walletagent.stream.buffer import DeltaCoalescer
from walletagent.stream.events import (
    AskDeltaEvent,
    AskEvent,
    AskRetractEvent,
    AskStartEvent,
    DoneEvent,
    ErrorEvent,
    FinalEvent,
    GeneratedImageEvent,
    HeartbeatEvent,
    IgnoredEvent,
    StreamEvent,
    ThinkingDeltaEvent,
    ThinkingEvent,
    ThoughtEvent,
    ToolCallEvent,
    ToolErrorEvent,
    ToolProgressEvent,
    ToolResultEvent,
    TxMessageEvent,
)
from walletagent.turn.models import (
    AnswerMessage,
    Notice,
    NoticeKind,
    ThinkingRecord,
    ToolCallRecord,
    ToolState,
    Turn,
    TurnState,
)

logger = logging.getLogger(__name__)

CANCELLED_NOTICE = "Generation stopped by user"
NO_RESPONSE_NOTICE = "The agent closed the stream without responding"

# Events that don't count as the producer recovering from an error.
_PASSIVE_EVENTS = (HeartbeatEvent, IgnoredEvent, DoneEvent, FinalEvent, ErrorEvent)


@dataclass
class _ToolCall:
    """Mutable working copy of a ToolCallRecord."""

    tool: str
    sequence: int
    reasoning_before: str | None
    state: ToolState = ToolState.RUNNING
    progress: list[str] = field(default_factory=list)
    error: str | None = None

    def resolve(self, state: ToolState, error: str | None = None) -> bool:
        """Move to a terminal state. Only the first call has any effect."""
        if self.state is not ToolState.RUNNING:
            return False
        self.state = state
        self.error = error
        return True

    def freeze(self) -> ToolCallRecord:
        return ToolCallRecord(
            tool=self.tool,
            sequence=self.sequence,
            state=self.state,
            progress=tuple(self.progress),
            reasoning_before=self.reasoning_before,
            error=self.error,
        )


class TurnStateMachine:
    """Consumes decoded events for one turn, strictly in arrival order.

    The machine starts ``idle``, moves to ``thinking`` once the stream is
    open, to ``streaming_answer`` when the answer starts, and ends in exactly
    one of ``finalized`` or ``aborted``. Once terminal, every further event,
    cancellation, or timeout is ignored.

    The answer text is always taken from the full token buffer. The optional
    coalescer only drives rendering and never feeds back into content.

    Args:
        prompt: The user prompt this turn answers.
        coalescer: Receives answer tokens for rate-limited rendering.
        on_change: Called with a fresh snapshot after structural changes
                   (tool activity, state transitions, notices).
        on_finish: Called once with the terminal snapshot.
    """

    def __init__(
        self,
        prompt: str,
        coalescer: DeltaCoalescer | None = None,
        on_change: Callable[[Turn], None] | None = None,
        on_finish: Callable[[Turn], None] | None = None,
        turn_id: str | None = None,
    ) -> None:
        self.turn_id = turn_id or uuid.uuid4().hex
        self.prompt = prompt
        self.created_at = datetime.datetime.now(datetime.timezone.utc)
        self._coalescer = coalescer
        self._on_change = on_change
        self._on_finish = on_finish
        self._artifacts = ArtifactAccumulator()

        self._state = TurnState.IDLE
        self._tool_calls: list[_ToolCall] = []
        self._tool_sequence = 0
        self._reasoning = ""
        self._notes: list[str] = []
        self._thinking_active = False
        self._answer_parts: list[str] = []
        self._answer: AnswerMessage | None = None
        self._answer_started = False
        self._fallback = False
        self._notices: list[Notice] = []
        self._pending_error: str | None = None

        self._handlers: dict[type, Callable] = {
            ThinkingEvent: self._on_thinking,
            ThinkingDeltaEvent: self._on_thinking_delta,
            ThoughtEvent: self._on_thought,
            ToolCallEvent: self._on_tool_call,
            ToolProgressEvent: self._on_tool_progress,
            ToolResultEvent: self._on_tool_result,
            ToolErrorEvent: self._on_tool_error,
            TxMessageEvent: self._on_tx_message,
            AskStartEvent: self._on_ask_start,
            AskRetractEvent: self._on_ask_retract,
            AskDeltaEvent: self._on_ask_delta,
            AskEvent: self._on_ask,
            GeneratedImageEvent: self._on_generated_image,
            DoneEvent: self._on_done,
            FinalEvent: self._on_final,
            ErrorEvent: self._on_error,
        }

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal

    @property
    def answer_text(self) -> str:
        """The authoritative partial answer: every token received so far."""
        return "".join(self._answer_parts)

    def snapshot(self) -> Turn:
        """Return an immutable view of the turn as it stands."""
        return Turn(
            turn_id=self.turn_id,
            prompt=self.prompt,
            created_at=self.created_at,
            state=self._state,
            thinking=ThinkingRecord(
                tool_calls=tuple(tc.freeze() for tc in self._tool_calls),
                reasoning=self._reasoning,
                notes=tuple(self._notes),
                active=self._thinking_active,
            ),
            answer=self._answer,
            fallback_completion=self._fallback,
            streaming_text=self.answer_text,
            notices=tuple(self._notices),
        )

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def begin(self) -> None:
        """The stream is open; start thinking."""
        if self._state is not TurnState.IDLE:
            return
        self._state = TurnState.THINKING
        self._thinking_active = True
        self._changed()

    def handle(self, event: StreamEvent) -> None:
        """Apply one event. Events after a terminal state are dropped."""
        if self.is_terminal:
            logger.debug("Dropping %s event for finished turn %s", event.type, self.turn_id)
            return
        if self._state is TurnState.IDLE:
            self.begin()
        if not isinstance(event, _PASSIVE_EVENTS):
            self._pending_error = None

        handler = self._handlers.get(type(event))
        if handler is not None:
            handler(event)

    def end_of_stream(self) -> None:
        """The remote closed the stream.

        Finalizes from buffered tokens if no final answer arrived, aborts if
        there is nothing to show or the last thing the producer sent was an
        error.
        """
        if self.is_terminal:
            return
        if self._pending_error is not None:
            self._abort(NoticeKind.ERROR, None)
        elif self.answer_text.strip():
            logger.info("Stream closed without final answer, using buffered text")
            self._finalize(self.answer_text, fallback=True)
        else:
            self._abort(NoticeKind.SYSTEM, NO_RESPONSE_NOTICE)

    def cancel(self, notice: str = CANCELLED_NOTICE) -> bool:
        """Abort at the user's request. Returns False if already terminal."""
        if self.is_terminal:
            return False
        logger.info("Turn %s cancelled by user", self.turn_id)
        self._abort(NoticeKind.CANCELLED, notice)
        return True

    def timeout(self, seconds: float) -> bool:
        """Abort after inactivity. Returns False if already terminal."""
        if self.is_terminal:
            return False
        self._abort(
            NoticeKind.TIMEOUT,
            f"No response from the agent for {seconds:g} seconds; the request was stopped",
        )
        return True

    def fail(self, message: str) -> bool:
        """Abort because the stream could not be opened or read."""
        if self.is_terminal:
            return False
        self._abort(NoticeKind.ERROR, message)
        return True

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_thinking(self, event: ThinkingEvent) -> None:
        if not self._thinking_active:
            self._thinking_active = True
            self._changed()

    def _on_thinking_delta(self, event: ThinkingDeltaEvent) -> None:
        if event.text:
            self._reasoning += event.text
            self._changed()

    def _on_thought(self, event: ThoughtEvent) -> None:
        text = event.text.strip()
        if not text:
            return
        self._notes.append(text)
        self._thinking_active = True
        self._changed()

    def _on_tool_call(self, event: ToolCallEvent) -> None:
        self._tool_sequence += 1
        # Reasoning streamed before a tool call explains that call.
        reasoning = self._reasoning.strip() or None
        self._reasoning = ""
        self._tool_calls.append(
            _ToolCall(tool=event.tool, sequence=self._tool_sequence, reasoning_before=reasoning)
        )
        self._thinking_active = True
        logger.debug("Tool %s_%d started", event.tool, self._tool_sequence)
        self._changed()

    def _running_call(self, tool: str) -> _ToolCall | None:
        """Most recently invoked call of *tool* that hasn't resolved."""
        for call in reversed(self._tool_calls):
            if call.tool == tool and call.state is ToolState.RUNNING:
                return call
        return None

    def _on_tool_progress(self, event: ToolProgressEvent) -> None:
        call = self._running_call(event.tool)
        if call is None:
            logger.debug("Dropping progress for unknown tool %s", event.tool)
            return
        call.progress.append(event.status)
        self._changed()

    def _on_tool_result(self, event: ToolResultEvent) -> None:
        self._artifacts.add_tool_output(event.output)
        call = self._running_call(event.tool)
        if call is None:
            logger.debug("Result for %s has no running call", event.tool)
            return
        call.resolve(ToolState.COMPLETED)
        self._changed()

    def _on_tool_error(self, event: ToolErrorEvent) -> None:
        call = self._running_call(event.tool)
        if call is None:
            logger.debug("Error for %s has no running call", event.tool)
            return
        call.resolve(ToolState.ERROR, event.error)
        logger.warning("Tool %s failed: %s", call.tool, event.error)
        self._changed()

    def _on_tx_message(self, event: TxMessageEvent) -> None:
        self._artifacts.add_transaction_hash(event.tx_hash)

    def _on_generated_image(self, event: GeneratedImageEvent) -> None:
        self._artifacts.set_generated_image(event.image)

    def _start_answer(self) -> None:
        self._answer_started = True
        self._thinking_active = False
        self._state = TurnState.STREAMING_ANSWER

    def _on_ask_start(self, event: AskStartEvent) -> None:
        if self._answer_started:
            logger.debug("Ignoring duplicate ask_start")
            return
        self._start_answer()
        self._changed()

    def _on_ask_retract(self, event: AskRetractEvent) -> None:
        logger.debug("Answer retracted after %d chars", len(self.answer_text))
        self._answer_parts.clear()
        self._answer_started = False
        self._state = TurnState.THINKING
        self._thinking_active = True
        if self._coalescer is not None:
            self._coalescer.reset()
        self._changed()

    def _on_ask_delta(self, event: AskDeltaEvent) -> None:
        if not event.text:
            return
        if not self._answer_started:
            self._start_answer()
            self._changed()
        self._answer_parts.append(event.text)
        if self._coalescer is not None:
            self._coalescer.append(event.text)

    def _on_ask(self, event: AskEvent) -> None:
        # Tokens may have reached us by a different path than the final
        # payload; whatever was accumulated locally wins.
        text = self.answer_text or event.message
        self._finalize(
            text,
            requires_confirmation=event.requires_confirmation,
            confirmation_question=event.confirmation_question,
        )

    def _on_done(self, event: DoneEvent) -> None:
        self._thinking_active = False
        if self._coalescer is not None:
            self._coalescer.flush_sync()
        self._changed()

    def _on_final(self, event: FinalEvent) -> None:
        if self._coalescer is not None:
            self._coalescer.flush_sync()

    def _on_error(self, event: ErrorEvent) -> None:
        message = event.message or "The agent reported an error"
        logger.warning("Agent reported error: %s", message)
        self._notices.append(Notice(NoticeKind.ERROR, message))
        self._pending_error = message
        self._changed()

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _close_thinking(self) -> None:
        self._thinking_active = False
        if self._reasoning.strip():
            self._notes.append(self._reasoning.strip())
        self._reasoning = ""

    def _finalize(
        self,
        text: str,
        requires_confirmation: bool = False,
        confirmation_question: str | None = None,
        fallback: bool = False,
    ) -> None:
        if self._coalescer is not None:
            self._coalescer.flush_sync()
            self._coalescer.close()
        self._close_thinking()

        self._artifacts.add_hashes_from_text(text)
        self._answer = AnswerMessage(
            text=text,
            artifacts=self._artifacts.drain_and_reset(),
            requires_confirmation=requires_confirmation,
            confirmation_question=confirmation_question,
        )
        self._fallback = fallback
        self._state = TurnState.FINALIZED
        logger.info(
            "Turn %s finalized (%d chars, %d tool calls, fallback=%s)",
            self.turn_id,
            len(text),
            len(self._tool_calls),
            fallback,
        )
        self._finished()

    def _abort(self, kind: NoticeKind, text: str | None) -> None:
        if self._coalescer is not None:
            self._coalescer.flush_sync()
            self._coalescer.close()
        self._close_thinking()
        self._artifacts.drain_and_reset()
        if text is not None:
            self._notices.append(Notice(kind, text))
        self._state = TurnState.ABORTED
        logger.info("Turn %s aborted (%s)", self.turn_id, kind.value)
        self._finished()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

    def _finished(self) -> None:
        snapshot = self.snapshot()
        if self._on_change is not None:
            self._on_change(snapshot)
        if self._on_finish is not None:
            self._on_finish(snapshot)
