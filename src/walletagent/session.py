"""Session lifecycle: owns the turn list and the single active stream."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable

from walletagent.errors import (
    ConcurrentStreamError,
    NoSessionError,
    StreamTimeoutError,
    TransportError,
    WalletAgentError,
)
from walletagent.stream.buffer import DeltaCoalescer
from walletagent.stream.events import decode_frame
from walletagent.stream.frames import iter_frames
from walletagent.stream.transport import (
    CancellationToken,
    StreamRequest,
    Transport,
    TransportReader,
)
from walletagent.stream.watchdog import DEFAULT_TIMEOUT, Watchdog
from walletagent.turn.machine import TurnStateMachine
from walletagent.turn.models import Session, Turn

if TYPE_CHECKING:
    from walletagent.backend import BackendClient, WalletSigner

logger = logging.getLogger(__name__)

TransportFactory = Callable[[StreamRequest], Transport]


@dataclass
class TurnListener:
    """Optional callbacks for following a turn as it streams.

    - ``on_render(text)``: rate-limited, full answer text so far.
    - ``on_change(turn)``: snapshot after each structural change.
    - ``on_finish(turn)``: terminal snapshot, called exactly once.
    """

    on_render: Callable[[str], Any] | None = None
    on_change: Callable[[Turn], None] | None = None
    on_finish: Callable[[Turn], None] | None = None


@dataclass
class _ActiveStream:
    machine: TurnStateMachine
    token: CancellationToken
    reader: TransportReader
    watchdog: Watchdog
    task: asyncio.Task | None = None
    error: WalletAgentError | None = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)


class TurnHandle:
    """Caller's handle on a started turn."""

    def __init__(self, manager: SessionManager, active: _ActiveStream) -> None:
        self._manager = manager
        self._active = active

    @property
    def turn_id(self) -> str:
        return self._active.machine.turn_id

    @property
    def done(self) -> bool:
        return self._active.finished.is_set()

    def snapshot(self) -> Turn:
        return self._active.machine.snapshot()

    def cancel(self) -> bool:
        """Cancel this turn. Returns False if it already finished."""
        return self._manager._cancel(self._active)

    async def wait(self) -> Turn:
        """Wait for the turn to finish and return its terminal snapshot.

        Raises:
            StreamTimeoutError: if the watchdog aborted the turn.
        """
        await self._active.finished.wait()
        if self._active.task is not None and self._active.task.done():
            # Surfaces unexpected pump failures.
            self._active.task.result()
        if self._active.error is not None:
            raise self._active.error
        return self._active.machine.snapshot()


class SessionManager:
    """Owns one conversation: its identity, its turns, and its active stream.

    At most one stream is active at a time; ``start_turn`` refuses to start a
    second one rather than multiplexing. Events are handled one at a time on
    the event loop, each to completion before the next chunk is read.

    Args:
        transport_factory: Builds the transport for each turn's request.
        wallet_address: Address of the connected wallet.
        chain_id: Chain the agent should act on.
        controls: Agent control flags sent with every prompt.
        watchdog_timeout: Seconds of stream silence before a turn is aborted.
        render_interval: Minimum seconds between render callbacks.
        listener: Callbacks for streaming updates.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        wallet_address: str | None = None,
        chain_id: int = 8453,
        controls: dict[str, Any] | None = None,
        session_id: str | None = None,
        watchdog_timeout: float = DEFAULT_TIMEOUT,
        render_interval: float = 1.0 / 60.0,
        listener: TurnListener | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self.wallet_address = wallet_address
        self.chain_id = chain_id
        self.controls = dict(controls or {})
        self.session_id = session_id
        self.watchdog_timeout = watchdog_timeout
        self.render_interval = render_interval
        self.listener = listener or TurnListener()

        self._turns: list[Turn] = []
        self._active: _ActiveStream | None = None

    # ------------------------------------------------------------------
    # Session identity
    # ------------------------------------------------------------------

    def attach(self, session_id: str) -> None:
        """Use *session_id* for subsequent turns."""
        self.session_id = session_id

    async def create_session(self, backend: BackendClient, signer: WalletSigner) -> str:
        """Authenticate *signer* with the backend and attach the new session."""
        session_id = await backend.create_session(
            signer, controls=self.controls, chain_id=self.chain_id
        )
        self.wallet_address = signer.address
        self.attach(session_id)
        return session_id

    async def resume_from_backend(self, backend: BackendClient, started_at: int) -> None:
        """Reload a historical conversation and continue it."""
        if not self.wallet_address:
            raise NoSessionError("A wallet address is required to resume a session")
        session_id, prior_turns = await backend.resume_session(
            self.wallet_address, started_at, self.chain_id
        )
        self.resume_session(prior_turns, session_id=session_id)

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    @property
    def active_turn(self) -> Turn | None:
        if self._active is None:
            return None
        return self._active.machine.snapshot()

    @property
    def streaming(self) -> bool:
        return self._active is not None

    async def start_turn(self, prompt: str) -> TurnHandle:
        """Send *prompt* and start streaming the response.

        Returns once the stream is open; the turn then proceeds in the
        background and is guaranteed to end finalized or aborted.

        Raises:
            ConcurrentStreamError: if a turn is already streaming.
            NoSessionError: if no session id is attached.
            TransportError: if the stream could not be opened.
        """
        if self._active is not None:
            raise ConcurrentStreamError(
                f"Turn {self._active.machine.turn_id} is still streaming"
            )
        if not self.session_id:
            raise NoSessionError("No session attached; create or resume one first")

        listener = self.listener
        coalescer = None
        if listener.on_render is not None:
            coalescer = DeltaCoalescer(listener.on_render, min_interval=self.render_interval)
        machine = TurnStateMachine(
            prompt,
            coalescer=coalescer,
            on_change=listener.on_change,
            on_finish=listener.on_finish,
        )
        request = StreamRequest(
            session_id=self.session_id,
            prompt=prompt,
            chain_id=self.chain_id,
            wallet_address=self.wallet_address,
            controls=dict(self.controls),
        )
        token = CancellationToken()
        reader = TransportReader(self._transport_factory(request), token)
        watchdog = Watchdog(
            self.watchdog_timeout,
            on_expire=lambda: self._on_watchdog_expired(active),
            guard=lambda: not machine.is_terminal,
        )
        active = _ActiveStream(machine=machine, token=token, reader=reader, watchdog=watchdog)
        # Claimed before the first await so a concurrent start is rejected.
        self._active = active
        active.watchdog.arm()

        try:
            opened = await reader.open()
        except TransportError as e:
            machine.fail(str(e))
            await self._release(active)
            raise
        except BaseException:
            machine.fail("Stream request was interrupted")
            await self._release(active)
            raise

        if opened:
            machine.begin()
            active.task = asyncio.create_task(self._pump(active))
        else:
            # Cancelled or timed out while connecting.
            await self._release(active)
        return TurnHandle(self, active)

    async def _pump(self, active: _ActiveStream) -> None:
        machine = active.machine
        try:
            async for frame in iter_frames(active.reader.chunks()):
                event = decode_frame(frame)
                if event is None:
                    continue
                active.watchdog.reset()
                machine.handle(event)
            if not active.token.cancelled:
                machine.end_of_stream()
        except Exception:
            logger.exception("Unexpected failure while processing stream")
            machine.fail("Unexpected error while processing the response")
            raise
        finally:
            await self._release(active)

    def _on_watchdog_expired(self, active: _ActiveStream) -> None:
        if active.machine.timeout(active.watchdog.timeout):
            active.error = StreamTimeoutError(
                active.watchdog.timeout, turn=active.machine.snapshot()
            )
        active.token.cancel("timeout")

    def _cancel(self, active: _ActiveStream) -> bool:
        cancelled = active.machine.cancel()
        active.token.cancel("user")
        return cancelled

    def cancel_active_turn(self) -> bool:
        """Stop the streaming turn, if any. Returns True if one was stopped."""
        if self._active is None:
            return False
        return self._cancel(self._active)

    async def _release(self, active: _ActiveStream) -> None:
        """Tear down *active* and record its turn, exactly once."""
        if active.finished.is_set():
            return
        active.watchdog.cancel()
        try:
            await active.reader.aclose()
        finally:
            if not active.machine.is_terminal:
                active.machine.fail("Stream ended unexpectedly")
            if self._active is active:
                self._turns.append(active.machine.snapshot())
                self._active = None
            active.finished.set()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def resume_session(
        self, prior_turns: Iterable[Turn], session_id: str | None = None
    ) -> None:
        """Replace the turn list with historical turns.

        Any active stream is cancelled and forgotten; its turn is not added
        to the new history.
        """
        if self._active is not None:
            active = self._active
            self._active = None
            self._cancel(active)
        self._turns = list(prior_turns)
        if session_id is not None:
            self.session_id = session_id
        logger.info("Resumed session %s with %d turns", self.session_id, len(self._turns))

    def new_chat(self) -> None:
        """Forget the current conversation entirely."""
        self.resume_session([])
        self.session_id = None

    def snapshot(self) -> Session:
        turns = list(self._turns)
        active_id = None
        if self._active is not None:
            turns.append(self._active.machine.snapshot())
            active_id = self._active.machine.turn_id
        return Session(
            session_id=self.session_id,
            wallet_address=self.wallet_address,
            chain_id=self.chain_id,
            turns=tuple(turns),
            active_turn_id=active_id,
        )

    async def aclose(self) -> None:
        """Cancel any active turn and wait for it to unwind."""
        active = self._active
        if active is None:
            return
        self._cancel(active)
        await active.finished.wait()
