"""Collects transaction hashes, citations, and images across a turn."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from walletagent.turn.models import ArtifactBundle, GeneratedImage

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"0x[a-fA-F0-9]{64}")


class ArtifactAccumulator:
    """Merges side artifacts from many events into one bundle per turn.

    Transaction hashes and citations are deduplicated, keeping the order in
    which they were first seen. Hashes are compared case-insensitively but
    stored as first sighted.
    """

    def __init__(self) -> None:
        self._clear()

    def _clear(self) -> None:
        self._tx_hashes: list[str] = []
        self._seen_tx: set[str] = set()
        self._citations: list[str] = []
        self._seen_citations: set[str] = set()
        self._image: GeneratedImage | None = None

    def add_transaction_hash(self, tx_hash: str) -> bool:
        """Record *tx_hash*. Returns False if it was already present."""
        tx_hash = tx_hash.strip()
        key = tx_hash.lower()
        if not tx_hash or key in self._seen_tx:
            return False
        self._seen_tx.add(key)
        self._tx_hashes.append(tx_hash)
        return True

    def add_citations(self, urls: Iterable[str]) -> None:
        for url in urls:
            if not isinstance(url, str) or not url or url in self._seen_citations:
                continue
            self._seen_citations.add(url)
            self._citations.append(url)

    def set_generated_image(self, image: GeneratedImage) -> None:
        """Attach *image*; a later image replaces an earlier one."""
        if self._image is not None and self._image != image:
            logger.debug("Replacing generated image %s", self._image.url)
        self._image = image

    def add_tool_output(self, output: dict[str, Any]) -> None:
        """Pick up artifacts carried in a tool result payload."""
        tx_hash = output.get("txHash")
        if isinstance(tx_hash, str):
            self.add_transaction_hash(tx_hash)
        citations = output.get("citations")
        if isinstance(citations, list):
            self.add_citations(citations)

    def add_hashes_from_text(self, text: str) -> None:
        """Record transaction hashes that appear literally in *text*."""
        for match in TX_HASH_RE.findall(text):
            self.add_transaction_hash(match)

    def drain_and_reset(self) -> ArtifactBundle:
        """Return everything collected so far and start over empty."""
        bundle = ArtifactBundle(
            tx_hashes=tuple(self._tx_hashes),
            citations=tuple(self._citations),
            image=self._image,
        )
        self._clear()
        return bundle

    @property
    def empty(self) -> bool:
        return not (self._tx_hashes or self._citations or self._image)
