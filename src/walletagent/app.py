import argparse
import asyncio
import logging
import signal
import sys

import httpx
from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.text import Text

from walletagent.config import WalletAgentConfig, ensure_sessions_dir, load_config
from walletagent.errors import StreamTimeoutError, WalletAgentError
from walletagent.session import SessionManager, TurnListener
from walletagent.simulated import SimulatedAgent
from walletagent.stream.transport import HttpTransport
from walletagent.transcript import SessionTranscript
from walletagent.turn.models import NoticeKind, ToolState, Turn, TurnState

logger = logging.getLogger(__name__)

_TOOL_STYLES = {
    ToolState.RUNNING: "yellow",
    ToolState.COMPLETED: "green",
    ToolState.ERROR: "red",
}


class TurnView:
    """Live rendering of the turn currently streaming."""

    def __init__(self) -> None:
        self.text = ""
        self.turn: Turn | None = None

    def on_render(self, text: str) -> None:
        self.text = text

    def on_change(self, turn: Turn) -> None:
        self.turn = turn

    def render(self):
        items = []
        turn = self.turn
        if turn is not None:
            for call in turn.thinking.tool_calls:
                line = Text(f"  {call.key} ", style=_TOOL_STYLES[call.state])
                if call.progress and call.state is ToolState.RUNNING:
                    line.append(call.progress[-1], style="dim")
                elif call.error:
                    line.append(call.error, style="red")
                items.append(line)
            if turn.thinking.active:
                items.append(Text("Thinking...", style="dim italic"))
        if self.text:
            items.append(Markdown(self.text))
        return Group(*items)


def print_turn(console: Console, turn: Turn) -> None:
    """Print the settled form of a finished turn."""
    for call in turn.thinking.tool_calls:
        if call.reasoning_before:
            console.print(Text(call.reasoning_before, style="dim italic"))
        console.print(Text(f"  {call.key} {call.state.value}", style=_TOOL_STYLES[call.state]))
    for note in turn.thinking.notes:
        console.print(Text(note, style="dim italic"))

    answer = turn.answer
    if turn.state is TurnState.FINALIZED and answer is not None:
        console.print(Markdown(answer.text))
        if turn.fallback_completion:
            console.print("[dim](response may be incomplete)[/dim]")
        if answer.requires_confirmation and answer.confirmation_question:
            console.print(f"[bold]{answer.confirmation_question}[/bold]")
        for url in answer.artifacts.citations:
            console.print(f"[blue]source:[/blue] {url}")
        for tx_hash in answer.artifacts.tx_hashes:
            console.print(f"[magenta]tx:[/magenta] {tx_hash}")
        if answer.artifacts.image is not None:
            console.print(f"[cyan]image:[/cyan] {answer.artifacts.image.url}")

    for notice in turn.notices:
        style = "yellow" if notice.kind is NoticeKind.CANCELLED else "red"
        console.print(f"[{style}]{notice.text}[/{style}]")


async def run_turn(
    manager: SessionManager, view: TurnView, console: Console, prompt: str
) -> Turn | None:
    """Stream one prompt to completion, cancelling on Ctrl-C."""
    loop = asyncio.get_running_loop()
    view.text, view.turn = "", None
    try:
        loop.add_signal_handler(signal.SIGINT, manager.cancel_active_turn)
    except NotImplementedError:
        pass

    try:
        with Live(view.render(), console=console, refresh_per_second=20, transient=True) as live:
            handle = await manager.start_turn(prompt)
            while not handle.done:
                live.update(view.render())
                await asyncio.sleep(0.05)
            try:
                turn = await handle.wait()
            except StreamTimeoutError as e:
                turn = e.turn or handle.snapshot()
    except WalletAgentError as e:
        console.print(f"[red]{e}[/red]")
        return None
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    print_turn(console, turn)
    return turn


async def run(config: WalletAgentConfig, prompts: list[str], simulated: bool, session_id) -> int:
    console = Console()
    view = TurnView()
    listener = TurnListener(on_render=view.on_render, on_change=view.on_change)

    client = None
    if simulated:
        factory = SimulatedAgent()
        session_id = session_id or "simulated"
    else:
        if not config.api_base_url:
            console.print("[red]api_base_url is not configured[/red]")
            return 2
        if not session_id:
            console.print("[red]A --session-id is required outside simulated mode[/red]")
            return 2
        client = httpx.AsyncClient(timeout=httpx.Timeout(config.connect_timeout))
        stream_url = config.stream_url

        def factory(request):
            return HttpTransport(client, stream_url, request)

    manager = SessionManager(
        factory,
        wallet_address=config.wallet_address,
        chain_id=config.chain_id,
        controls=config.controls,
        session_id=session_id,
        watchdog_timeout=config.watchdog_timeout,
        render_interval=config.render_interval,
        listener=listener,
    )

    transcript = None
    if config.save_sessions:
        transcript = SessionTranscript(ensure_sessions_dir(config), config)

    interactive = not prompts
    try:
        while True:
            if prompts:
                prompt = prompts.pop(0)
                console.print(f"[bold]> {prompt}[/bold]")
            elif interactive:
                try:
                    prompt = await asyncio.to_thread(console.input, "[bold]> [/bold]")
                except (EOFError, KeyboardInterrupt):
                    break
            else:
                break
            if not prompt.strip():
                continue

            turn = await run_turn(manager, view, console, prompt)
            if turn is not None and transcript is not None:
                transcript.append_turn(turn)
    finally:
        await manager.aclose()
        if transcript is not None:
            transcript.finalize()
        if client is not None:
            await client.aclose()
    return 0


def main():
    """Main entry point for the walletagent command."""
    parser = argparse.ArgumentParser()
    parser.add_argument("prompts", nargs="*", help="Prompts to send, one turn each")
    parser.add_argument(
        "--simulated", action="store_true", default=None, help="Use the offline simulated agent"
    )
    parser.add_argument("--session-id", default=None, help="Agent session to send prompts to")
    parser.add_argument("--chain-id", type=int, default=None, help="Chain the agent acts on")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds of stream silence before a turn is aborted",
    )
    parser.add_argument(
        "--logging", action="store_true", default=None, help="Enable logging"
    )
    args = parser.parse_args()

    config, config_error = load_config()

    # Command-line arguments override config
    if args.chain_id is not None:
        config.chain_id = args.chain_id
    if args.timeout is not None:
        config.watchdog_timeout = args.timeout
    if args.logging:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            filename="walletagent.log",
            filemode="a",  # append mode
        )
        logging.getLogger("walletagent").setLevel(logging.DEBUG)

    if config_error:
        print(f"Config error: {config_error}", file=sys.stderr)

    sys.exit(asyncio.run(run(config, list(args.prompts), bool(args.simulated), args.session_id)))


if __name__ == "__main__":
    main()
