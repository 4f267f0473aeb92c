"""Typed agent stream events and the frame decoder.

Every frame on the wire looks like ``data: {json}``. The JSON payload carries
a string ``type`` that selects one of the event classes below. Frames that
cannot be decoded, and payloads with an unknown type, are dropped so that a
producer can add new event kinds without breaking older clients.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Union

from walletagent.turn.models import GeneratedImage

logger = logging.getLogger(__name__)

FRAME_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class ThinkingEvent:
    type: ClassVar[str] = "thinking"


@dataclass(frozen=True)
class ThinkingDeltaEvent:
    type: ClassVar[str] = "thinking_delta"
    text: str


@dataclass(frozen=True)
class ThoughtEvent:
    """One-line summary of the agent's plan."""

    type: ClassVar[str] = "thought"
    text: str


@dataclass(frozen=True)
class ToolCallEvent:
    type: ClassVar[str] = "tool_call"
    tool: str


@dataclass(frozen=True)
class ToolProgressEvent:
    type: ClassVar[str] = "tool_progress"
    tool: str
    status: str


@dataclass(frozen=True)
class ToolResultEvent:
    type: ClassVar[str] = "tool_result"
    tool: str
    output: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolErrorEvent:
    type: ClassVar[str] = "tool_error"
    tool: str
    error: str | None = None


@dataclass(frozen=True)
class TxMessageEvent:
    type: ClassVar[str] = "tx_message"
    tx_hash: str


@dataclass(frozen=True)
class AskStartEvent:
    type: ClassVar[str] = "ask_start"


@dataclass(frozen=True)
class AskRetractEvent:
    type: ClassVar[str] = "ask_retract"


@dataclass(frozen=True)
class AskDeltaEvent:
    type: ClassVar[str] = "ask_delta"
    text: str


@dataclass(frozen=True)
class AskEvent:
    type: ClassVar[str] = "ask"
    message: str = ""
    requires_confirmation: bool = False
    confirmation_question: str | None = None


@dataclass(frozen=True)
class GeneratedImageEvent:
    type: ClassVar[str] = "generated_image"
    image: GeneratedImage


@dataclass(frozen=True)
class HeartbeatEvent:
    type: ClassVar[str] = "heartbeat"


@dataclass(frozen=True)
class DoneEvent:
    type: ClassVar[str] = "done"


@dataclass(frozen=True)
class FinalEvent:
    type: ClassVar[str] = "final"


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"
    message: str = ""


@dataclass(frozen=True)
class IgnoredEvent:
    """A known event kind that carries nothing this client acts on."""

    type: ClassVar[str] = "ignored"
    kind: str


StreamEvent = Union[
    ThinkingEvent,
    ThinkingDeltaEvent,
    ThoughtEvent,
    ToolCallEvent,
    ToolProgressEvent,
    ToolResultEvent,
    ToolErrorEvent,
    TxMessageEvent,
    AskStartEvent,
    AskRetractEvent,
    AskDeltaEvent,
    AskEvent,
    GeneratedImageEvent,
    HeartbeatEvent,
    DoneEvent,
    FinalEvent,
    ErrorEvent,
    IgnoredEvent,
]

# Payload parsers keyed by the wire ``type``. A parser returns None when the
# payload is missing a required field.
EventParser = Callable[[dict[str, Any]], "StreamEvent | None"]
PARSERS: dict[str, EventParser] = {}

# Kinds emitted by the producer that only matter to other clients.
IGNORED_KINDS = (
    "followup_resolved",
    "model_delta",
    "model_stream_end",
    "model_prompt",
    "model_response",
)


def _register(kind: str) -> Callable[[EventParser], EventParser]:
    def decorator(parser: EventParser) -> EventParser:
        PARSERS[kind] = parser
        return parser

    return decorator


def _str(payload: dict[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else default


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value:
            return value
    return None


@_register("thinking")
def _parse_thinking(payload: dict[str, Any]) -> StreamEvent:
    return ThinkingEvent()


@_register("thinking_delta")
def _parse_thinking_delta(payload: dict[str, Any]) -> StreamEvent:
    return ThinkingDeltaEvent(text=_str(payload, "text"))


@_register("thought")
def _parse_thought(payload: dict[str, Any]) -> StreamEvent:
    return ThoughtEvent(text=_str(payload, "text"))


@_register("tool_call")
def _parse_tool_call(payload: dict[str, Any]) -> StreamEvent:
    return ToolCallEvent(tool=_str(payload, "tool") or "unknown")


@_register("tool_progress")
def _parse_tool_progress(payload: dict[str, Any]) -> StreamEvent:
    return ToolProgressEvent(
        tool=_str(payload, "tool") or "unknown",
        status=_str(payload, "status"),
    )


@_register("tool_result")
def _parse_tool_result(payload: dict[str, Any]) -> StreamEvent:
    output = payload.get("output")
    return ToolResultEvent(
        tool=_str(payload, "tool") or "unknown",
        output=output if isinstance(output, dict) else {},
    )


@_register("tool_error")
def _parse_tool_error(payload: dict[str, Any]) -> StreamEvent:
    error = _first(payload, "error", "message")
    return ToolErrorEvent(
        tool=_str(payload, "tool") or "unknown",
        error=str(error) if error is not None else None,
    )


@_register("tx_message")
def _parse_tx_message(payload: dict[str, Any]) -> StreamEvent | None:
    tx_hash = _str(payload, "txHash").strip()
    if not tx_hash:
        return None
    return TxMessageEvent(tx_hash=tx_hash)


@_register("ask_start")
def _parse_ask_start(payload: dict[str, Any]) -> StreamEvent:
    return AskStartEvent()


@_register("ask_retract")
def _parse_ask_retract(payload: dict[str, Any]) -> StreamEvent:
    return AskRetractEvent()


@_register("ask_delta")
def _parse_ask_delta(payload: dict[str, Any]) -> StreamEvent:
    return AskDeltaEvent(text=_str(payload, "text"))


@_register("ask")
def _parse_ask(payload: dict[str, Any]) -> StreamEvent:
    # The producer has used several spellings for these over time.
    requires = _first(
        payload,
        "requiresConfirmation",
        "requires_confirmation",
        "needsConfirmation",
        "needs_confirmation",
    )
    question = _first(payload, "confirmationQuestion", "confirmation_question")
    return AskEvent(
        message=_str(payload, "message"),
        requires_confirmation=bool(requires),
        confirmation_question=question if isinstance(question, str) else None,
    )


@_register("generated_image")
def _parse_generated_image(payload: dict[str, Any]) -> StreamEvent | None:
    url = _str(payload, "imageUrl")
    if not url:
        return None
    return GeneratedImageEvent(
        image=GeneratedImage(
            url=url,
            prompt=payload.get("prompt"),
            style=payload.get("style"),
            service=payload.get("service"),
            model=payload.get("model"),
            generated_at=payload.get("generatedAt"),
        )
    )


@_register("heartbeat")
def _parse_heartbeat(payload: dict[str, Any]) -> StreamEvent:
    return HeartbeatEvent()


@_register("done")
def _parse_done(payload: dict[str, Any]) -> StreamEvent:
    return DoneEvent()


@_register("final")
def _parse_final(payload: dict[str, Any]) -> StreamEvent:
    return FinalEvent()


@_register("error")
def _parse_error(payload: dict[str, Any]) -> StreamEvent:
    message = _first(payload, "message", "error")
    return ErrorEvent(message=str(message) if message is not None else "")


for _kind in IGNORED_KINDS:
    PARSERS[_kind] = lambda payload, _kind=_kind: IgnoredEvent(kind=_kind)


def decode_frame(frame: str) -> StreamEvent | None:
    """Decode one frame into an event, or None if it should be skipped."""
    frame = frame.strip()
    if not frame or not frame.startswith(FRAME_PREFIX):
        return None

    data = frame[len(FRAME_PREFIX) :].strip()
    if data == DONE_SENTINEL:
        return None

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        logger.debug("Dropping malformed frame: %s (data=%.200s)", e, data)
        return None

    if not isinstance(payload, dict):
        logger.debug("Dropping non-object payload: %.200s", data)
        return None

    kind = payload.get("type")
    parser = PARSERS.get(kind) if isinstance(kind, str) else None
    if parser is None:
        logger.debug("Dropping event with unrecognized type %r", kind)
        return None

    return parser(payload)
