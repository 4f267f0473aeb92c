"""Session transcript management.

Saves finished turns as timestamped markdown files in
~/.walletagent/sessions/
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path

from walletagent.config import WalletAgentConfig
from walletagent.turn.models import NoticeKind, ToolState, Turn, TurnState

logger = logging.getLogger(__name__)


class SessionTranscript:
    """Manages saving session transcripts to markdown files."""

    def __init__(self, sessions_dir: Path, config: WalletAgentConfig):
        """Initialize session transcript manager.

        Args:
            sessions_dir: Directory where session files will be saved
        """
        self.sessions_dir = sessions_dir
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.config = config

        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        self.session_file = self.sessions_dir / f"session_{timestamp}.md"

        self._header_written = False

    def _ensure_header(self) -> None:
        if self._header_written:
            return

        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        header = f"""# Wallet Agent Session
**Started:** {timestamp}
**Wallet:** {self.config.wallet_address or "not connected"}
**Chain:** {self.config.chain_id}

---

"""
        with open(self.session_file, "w") as f:
            f.write(header)

        self._header_written = True

    def append_turn(self, turn: Turn) -> None:
        """Append a finished turn to the transcript. Unfinished turns are skipped."""
        if not turn.is_terminal:
            logger.debug("Not writing unfinished turn %s", turn.turn_id)
            return
        self._ensure_header()

        markdown = turn_to_markdown(turn)
        with open(self.session_file, "a") as f:
            f.write(markdown)
            f.write("\n\n")

    def finalize(self) -> None:
        """Finalize the session transcript (write footer)."""
        if not self._header_written:
            return

        timestamp = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        footer = f"""---

**Ended:** {timestamp}
"""
        with open(self.session_file, "a") as f:
            f.write(footer)


def turn_to_markdown(turn: Turn) -> str:
    """Render one turn as markdown sections."""
    parts = [f"## User\n\n{turn.prompt}"]

    thinking = turn.thinking
    if thinking.tool_calls:
        lines = []
        for call in thinking.tool_calls:
            line = f"- `{call.key}` {call.state.value}"
            if call.state is ToolState.ERROR and call.error:
                line += f": {call.error}"
            lines.append(line)
        parts.append("### Tools\n\n" + "\n".join(lines))

    reasoning = [tc.reasoning_before for tc in thinking.tool_calls if tc.reasoning_before]
    reasoning += list(thinking.notes)
    if reasoning:
        body = "\n\n".join(reasoning)
        parts.append(
            f"### Thinking\n\n<details>\n<summary>Thinking</summary>\n\n{body}\n\n</details>"
        )

    answer = turn.answer
    if turn.state is TurnState.FINALIZED and answer is not None:
        parts.append(f"## Assistant\n\n{answer.text.strip()}")
        if answer.requires_confirmation and answer.confirmation_question:
            parts.append(f"> {answer.confirmation_question}")
        if answer.artifacts.citations:
            parts.append(
                "### Sources\n\n" + "\n".join(f"- {url}" for url in answer.artifacts.citations)
            )
        if answer.artifacts.tx_hashes:
            parts.append(
                "### Transactions\n\n"
                + "\n".join(f"- `{h}`" for h in answer.artifacts.tx_hashes)
            )
        if answer.artifacts.image is not None:
            parts.append(f"![{answer.artifacts.image.prompt or 'image'}]({answer.artifacts.image.url})")

    for notice in turn.notices:
        label = "Error" if notice.kind is NoticeKind.ERROR else notice.kind.value.capitalize()
        parts.append(f"*{label}: {notice.text}*")

    return "\n\n".join(parts)
