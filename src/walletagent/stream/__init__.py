"""Stream decoding: transport, framing, events and per-turn helpers."""

from __future__ import annotations

from walletagent.stream.artifacts import ArtifactAccumulator
from walletagent.stream.buffer import DeltaCoalescer
from walletagent.stream.events import StreamEvent, decode_frame
from walletagent.stream.frames import FrameSplitter, iter_frames
from walletagent.stream.transport import (
    CancellationToken,
    HttpTransport,
    StreamRequest,
    Transport,
    TransportReader,
)
from walletagent.stream.watchdog import Watchdog

__all__ = [
    "ArtifactAccumulator",
    "CancellationToken",
    "DeltaCoalescer",
    "FrameSplitter",
    "HttpTransport",
    "StreamEvent",
    "StreamRequest",
    "Transport",
    "TransportReader",
    "Watchdog",
    "decode_frame",
    "iter_frames",
]
