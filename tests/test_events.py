"""Tests for decoding frames into typed events."""

import json

import pytest

from walletagent.stream.events import (
    AskDeltaEvent,
    AskEvent,
    ErrorEvent,
    GeneratedImageEvent,
    HeartbeatEvent,
    IgnoredEvent,
    ThinkingDeltaEvent,
    ThoughtEvent,
    ToolCallEvent,
    ToolErrorEvent,
    ToolProgressEvent,
    ToolResultEvent,
    TxMessageEvent,
    decode_frame,
)


def data(**payload):
    return "data: " + json.dumps(payload)


class TestDecodeFrame:
    def test_ask_delta(self):
        assert decode_frame(data(type="ask_delta", text="Hel")) == AskDeltaEvent(text="Hel")

    def test_thinking_delta(self):
        assert decode_frame(data(type="thinking_delta", text="hm")) == ThinkingDeltaEvent(
            text="hm"
        )

    def test_tool_events(self):
        assert decode_frame(data(type="tool_call", tool="swap")) == ToolCallEvent(tool="swap")
        assert decode_frame(
            data(type="tool_progress", tool="swap", status="quoting")
        ) == ToolProgressEvent(tool="swap", status="quoting")
        result = decode_frame(
            data(type="tool_result", tool="web_search", output={"citations": ["a"]})
        )
        assert result == ToolResultEvent(tool="web_search", output={"citations": ["a"]})
        assert decode_frame(data(type="tool_error", tool="swap", error="slippage")) == (
            ToolErrorEvent(tool="swap", error="slippage")
        )

    def test_tool_name_defaults_to_unknown(self):
        assert decode_frame(data(type="tool_call")) == ToolCallEvent(tool="unknown")

    def test_tool_result_non_dict_output(self):
        event = decode_frame(data(type="tool_result", tool="x", output="text"))
        assert event == ToolResultEvent(tool="x", output={})

    def test_tx_message_requires_hash(self):
        assert decode_frame(data(type="tx_message", txHash="0xabc")) == TxMessageEvent(
            tx_hash="0xabc"
        )
        assert decode_frame(data(type="tx_message")) is None

    def test_ask_fields(self):
        event = decode_frame(
            data(
                type="ask",
                message="Swap?",
                requiresConfirmation=True,
                confirmationQuestion="Proceed?",
            )
        )
        assert event == AskEvent(
            message="Swap?", requires_confirmation=True, confirmation_question="Proceed?"
        )

    @pytest.mark.parametrize(
        "key", ["requires_confirmation", "needsConfirmation", "needs_confirmation"]
    )
    def test_ask_confirmation_aliases(self, key):
        event = decode_frame(data(type="ask", message="", **{key: True}))
        assert event.requires_confirmation is True

    def test_ask_defaults(self):
        event = decode_frame(data(type="ask"))
        assert event == AskEvent(message="", requires_confirmation=False)

    def test_generated_image(self):
        event = decode_frame(
            data(
                type="generated_image",
                imageUrl="https://img.test/1.png",
                prompt="a cat",
                generatedAt="2025-01-01T00:00:00Z",
            )
        )
        assert isinstance(event, GeneratedImageEvent)
        assert event.image.url == "https://img.test/1.png"
        assert event.image.prompt == "a cat"
        assert event.image.generated_at == "2025-01-01T00:00:00Z"
        assert decode_frame(data(type="generated_image")) is None

    def test_error_message_or_error_field(self):
        assert decode_frame(data(type="error", message="boom")) == ErrorEvent(message="boom")
        assert decode_frame(data(type="error", error="bad")) == ErrorEvent(message="bad")

    def test_thought(self):
        assert decode_frame(data(type="thought", text="Quote, then swap")) == ThoughtEvent(
            text="Quote, then swap"
        )

    def test_heartbeat(self):
        assert decode_frame(data(type="heartbeat")) == HeartbeatEvent()

    @pytest.mark.parametrize("kind", ["model_delta", "model_response", "followup_resolved"])
    def test_ignored_kinds(self, kind):
        assert decode_frame(data(type=kind, text="x")) == IgnoredEvent(kind=kind)

    @pytest.mark.parametrize(
        "frame",
        [
            "",
            "   ",
            ": comment",
            "event: ping",
            "data: [DONE]",
            "data: {not json",
            "data: [1, 2]",
            'data: "string"',
            'data: {"text": "no type"}',
            'data: {"type": "brand_new_kind"}',
            'data: {"type": 42}',
        ],
    )
    def test_skipped_frames(self, frame):
        assert decode_frame(frame) is None

    def test_no_space_after_prefix(self):
        assert decode_frame('data:{"type":"heartbeat"}') == HeartbeatEvent()
