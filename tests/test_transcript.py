"""Tests for session transcript saving."""

import datetime

from walletagent.config import WalletAgentConfig
from walletagent.transcript import SessionTranscript, turn_to_markdown
from walletagent.turn.models import (
    AnswerMessage,
    ArtifactBundle,
    Notice,
    NoticeKind,
    ThinkingRecord,
    ToolCallRecord,
    ToolState,
    Turn,
    TurnState,
)

HASH = "0x" + "c" * 64


def make_config(**kwargs):
    c = WalletAgentConfig()
    c.wallet_address = kwargs.get("wallet_address", "0xwallet")
    c.chain_id = kwargs.get("chain_id", 8453)
    return c


def make_turn(state=TurnState.FINALIZED, **kwargs):
    return Turn(
        turn_id="t1",
        prompt=kwargs.get("prompt", "Send 0.01 ETH to alice"),
        created_at=datetime.datetime.now(datetime.timezone.utc),
        state=state,
        thinking=kwargs.get("thinking", ThinkingRecord()),
        answer=kwargs.get("answer"),
        notices=kwargs.get("notices", ()),
    )


class TestSessionTranscript:
    def test_creates_session_file(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        assert s.session_file.parent == tmp_sessions_dir
        assert s.session_file.name.startswith("session_")
        assert s.session_file.name.endswith(".md")

    def test_header_written_once(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        s._ensure_header()
        s._ensure_header()
        content = s.session_file.read_text()
        assert content.count("# Wallet Agent Session") == 1

    def test_header_contains_metadata(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config(wallet_address="0xabc", chain_id=1))
        s._ensure_header()
        content = s.session_file.read_text()
        assert "0xabc" in content
        assert "**Chain:** 1" in content

    def test_append_turn(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        s.append_turn(make_turn(answer=AnswerMessage(text="Sent.")))
        content = s.session_file.read_text()
        assert "## User\n\nSend 0.01 ETH to alice" in content
        assert "## Assistant\n\nSent." in content

    def test_unfinished_turn_skipped(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        s.append_turn(make_turn(state=TurnState.STREAMING_ANSWER))
        assert not s.session_file.exists()

    def test_finalize_adds_footer(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        s._ensure_header()
        s.finalize()
        assert "Ended:" in s.session_file.read_text()

    def test_finalize_noop_without_header(self, tmp_sessions_dir):
        s = SessionTranscript(tmp_sessions_dir, make_config())
        s.finalize()
        assert not s.session_file.exists()


class TestTurnToMarkdown:
    def test_tools_and_reasoning(self):
        thinking = ThinkingRecord(
            tool_calls=(
                ToolCallRecord("send_transaction", 1, ToolState.COMPLETED, reasoning_before="Prepare it."),
                ToolCallRecord("notify", 2, ToolState.ERROR, error="offline"),
            ),
            notes=("Wrap up.",),
        )
        md = turn_to_markdown(make_turn(thinking=thinking, answer=AnswerMessage(text="ok")))
        assert "- `send_transaction_1` completed" in md
        assert "- `notify_2` error: offline" in md
        assert "Prepare it.\n\nWrap up." in md

    def test_artifacts(self):
        answer = AnswerMessage(
            text="Done",
            artifacts=ArtifactBundle(tx_hashes=(HASH,), citations=("https://a.test",)),
        )
        md = turn_to_markdown(make_turn(answer=answer))
        assert "### Sources\n\n- https://a.test" in md
        assert f"### Transactions\n\n- `{HASH}`" in md

    def test_confirmation_question(self):
        answer = AnswerMessage(
            text="Quote ready", requires_confirmation=True, confirmation_question="Proceed?"
        )
        assert "> Proceed?" in turn_to_markdown(make_turn(answer=answer))

    def test_aborted_turn_notices(self):
        md = turn_to_markdown(
            make_turn(
                state=TurnState.ABORTED,
                notices=(Notice(NoticeKind.CANCELLED, "Generation stopped by user"),),
            )
        )
        assert "## Assistant" not in md
        assert "*Cancelled: Generation stopped by user*" in md
