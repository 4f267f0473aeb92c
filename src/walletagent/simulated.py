"""Scripted transports - no network, configurable canned streams.

``ScriptedTransport`` replays a fixed list of chunks and is what the tests
drive the session with. ``SimulatedAgent`` builds such transports from
prompt-matched scenarios for the ``--simulated`` demo mode.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Sequence, Union

from walletagent.errors import TransportError
from walletagent.stream.events import DONE_SENTINEL, FRAME_PREFIX
from walletagent.stream.frames import FRAME_DELIMITER
from walletagent.stream.transport import StreamRequest, Transport

logger = logging.getLogger(__name__)

# A chunk of body bytes, or a pause in seconds before the next chunk.
ScriptStep = Union[str, bytes, float]


def frame(event_type: str, **fields: Any) -> str:
    """Encode one event as a wire frame, delimiter included."""
    payload = {"type": event_type, **fields}
    return f"{FRAME_PREFIX} {json.dumps(payload)}{FRAME_DELIMITER}"


def done_frame() -> str:
    return f"{FRAME_PREFIX} {DONE_SENTINEL}{FRAME_DELIMITER}"


class ScriptedTransport(Transport):
    """Replays *script* as the response body.

    Args:
        script: Chunks to yield in order. Floats are sleeps, which is how
                tests simulate a quiet or stalled producer.
        status_code: A non-2xx value makes ``open`` fail like a rejected
                     request.
        open_delay: Seconds ``open`` takes to "connect".
    """

    def __init__(
        self,
        script: Sequence[ScriptStep] = (),
        status_code: int = 200,
        open_delay: float = 0.0,
    ) -> None:
        self.script = list(script)
        self.status_code = status_code
        self.open_delay = open_delay
        self.request: StreamRequest | None = None
        self.opened = False
        self.closed = False
        self.chunks_sent = 0

    async def open(self) -> None:
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if not 200 <= self.status_code < 300:
            raise TransportError(
                f"Stream request failed: {self.status_code}", status_code=self.status_code
            )
        self.opened = True

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        for step in self.script:
            if isinstance(step, (int, float)):
                await asyncio.sleep(step)
                continue
            self.chunks_sent += 1
            yield step.encode("utf-8") if isinstance(step, str) else step

    async def aclose(self) -> None:
        self.closed = True


def scripted_factory(*transports: ScriptedTransport):
    """Transport factory that hands out *transports* in order, one per turn."""
    queue = list(transports)

    def factory(request: StreamRequest) -> ScriptedTransport:
        if not queue:
            raise RuntimeError("No scripted transport left for this turn")
        transport = queue.pop(0)
        transport.request = request
        return transport

    return factory


_RESP_BALANCE = (
    "Your wallet holds **0.42 ETH** and **1,250 USDC** on Base.\n\n"
    "| Asset | Balance | Value |\n"
    "|-------|---------|-------|\n"
    "| ETH   | 0.42    | $1,386 |\n"
    "| USDC  | 1,250   | $1,250 |\n"
)

_RESP_SWAP = (
    "I can swap **100 USDC** for roughly **0.0303 ETH** at the current rate. "
    "The estimated network fee is under $0.01."
)

_RESP_SEND = (
    "Sent 0.01 ETH. The transaction is "
    "0x9f2c4a1be3d0c6f8a7b5e4d3c2b1a09f8e7d6c5b4a3928170615f4e3d2c1b0a9."
)

_RESP_PRICE = (
    "ETH is trading around **$3,300**, up 2.1% over the last 24 hours. "
    "Sources are listed below."
)

_DEFAULT_SCENARIOS: list[dict[str, Any]] = [
    {
        "pattern": r"balance|holdings|portfolio",
        "thinking": "The user wants their balances. I'll read the wallet's token holdings.",
        "tools": [("get_balances", {"assets": 2}, ["Reading token balances"])],
        "response": _RESP_BALANCE,
    },
    {
        "pattern": r"swap|exchange|trade",
        "thinking": "A swap needs a quote first, then confirmation before anything is signed.",
        "tools": [("get_swap_quote", {"amountOut": "0.0303"}, ["Fetching quote"])],
        "response": _RESP_SWAP,
        "confirm": "Do you want me to execute this swap?",
    },
    {
        "pattern": r"send|transfer|pay",
        "thinking": "Prepare the transfer and submit it.",
        "tools": [
            (
                "send_transaction",
                {"txHash": "0x9f2c4a1be3d0c6f8a7b5e4d3c2b1a09f8e7d6c5b4a3928170615f4e3d2c1b0a9"},
                ["Building transaction", "Waiting for confirmation"],
            )
        ],
        "response": _RESP_SEND,
    },
    {
        "pattern": r"price|market|news",
        "thinking": "Look up current market data.",
        "tools": [
            (
                "web_search",
                {"citations": ["https://example.com/eth-price", "https://example.com/markets"]},
                ["Searching the web"],
            )
        ],
        "response": _RESP_PRICE,
    },
]

_DEFAULT_RESPONSE = (
    "I can check balances, quote swaps, send tokens, and look up prices. "
    "What would you like to do?"
)


def _tokens(text: str, size: int = 6) -> list[str]:
    return [text[i : i + size] for i in range(0, len(text), size)]


class SimulatedAgent:
    """Offline stand-in for the agent backend.

    Scenarios are matched against the prompt by regex. Each scenario is a
    dict with a required 'response' and optional 'pattern', 'thinking',
    'tools' (``(name, output, progress)`` tuples) and 'confirm'.
    """

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.scenarios: list[dict[str, Any]] = list(_DEFAULT_SCENARIOS)
        self.default_response = _DEFAULT_RESPONSE

    def add_scenario(self, response: str, pattern: str | None = None, **extra: Any) -> None:
        scenario: dict[str, Any] = {"response": response, **extra}
        if pattern is not None:
            scenario["pattern"] = pattern
        self.scenarios.append(scenario)

    def _find_scenario(self, prompt: str) -> dict[str, Any] | None:
        for s in self.scenarios:
            pattern = s.get("pattern")
            if pattern and re.search(pattern, prompt, re.IGNORECASE):
                return s
        return None

    def script_for(self, prompt: str) -> list[ScriptStep]:
        """Build the frame sequence a real agent might send for *prompt*."""
        scenario = self._find_scenario(prompt) or {"response": self.default_response}
        pause = self.delay
        steps: list[ScriptStep] = [frame("thinking")]

        thinking = scenario.get("thinking")
        if thinking:
            for chunk in _tokens(thinking, 12):
                steps += [pause, frame("thinking_delta", text=chunk)]

        for name, output, progress in scenario.get("tools", []):
            steps += [pause, frame("tool_call", tool=name)]
            for status in progress:
                steps += [pause * 5, frame("tool_progress", tool=name, status=status)]
            steps += [pause * 5, frame("tool_result", tool=name, output=output)]

        response = scenario["response"]
        steps += [pause, frame("ask_start")]
        for chunk in _tokens(response):
            steps += [pause, frame("ask_delta", text=chunk)]

        confirm = scenario.get("confirm")
        steps.append(
            frame(
                "ask",
                message=response,
                requiresConfirmation=bool(confirm),
                confirmationQuestion=confirm,
            )
        )
        steps += [frame("done"), done_frame()]
        return steps

    def __call__(self, request: StreamRequest) -> ScriptedTransport:
        logger.debug("Simulating response for prompt %r", request.prompt)
        transport = ScriptedTransport(self.script_for(request.prompt))
        transport.request = request
        return transport
