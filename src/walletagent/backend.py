"""Session and auth collaborators.

Only the request/response contracts live here. Wallet signing is delegated
to a ``WalletSigner`` supplied by whichever wallet integration is in use.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx

from walletagent.errors import BackendError
from walletagent.turn.models import AnswerMessage, Turn, TurnState

logger = logging.getLogger(__name__)

NONCE_PATH = "/wallet/nonce"
VERIFY_PATH = "/wallet/verify"
CREATE_SESSION_PATH = "/agent/session"
RESUME_PATH = "/chat/resume"
HISTORY_PATH = "/chat/session"

SESSION_ACTION = "create_agent_session"


class WalletSigner(ABC):
    """A connected wallet that can prove ownership of its address."""

    @property
    @abstractmethod
    def address(self) -> str:
        """The wallet's address."""

    @abstractmethod
    async def sign_message(self, challenge: str) -> str:
        """Sign *challenge* and return the signature.

        Implementations should raise ``BackendError`` if the user rejects
        the request.
        """


class BackendClient:
    """Thin async client for the session backend."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error("Backend request to %s failed: %s", path, e)
            raise BackendError(f"Request to {path} failed: {e}") from e
        return self._parse(path, response)

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error("Backend request to %s failed: %s", path, e)
            raise BackendError(f"Request to {path} failed: {e}") from e
        return self._parse(path, response)

    @staticmethod
    def _parse(path: str, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.is_success:
            message = data.get("error") if isinstance(data, dict) else None
            raise BackendError(
                message or f"{path} returned {response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise BackendError(f"{path} returned an unexpected payload")
        return data

    async def request_nonce(self, wallet_address: str, action: str = SESSION_ACTION) -> str:
        data = await self._post(NONCE_PATH, {"walletAddress": wallet_address, "action": action})
        challenge = data.get("message")
        if not challenge:
            raise BackendError("Failed to get wallet verification message")
        return challenge

    async def verify_signature(
        self,
        wallet_address: str,
        challenge: str,
        signature: str,
        action: str = SESSION_ACTION,
    ) -> str:
        """Exchange a signed challenge for an auth session id."""
        data = await self._post(
            VERIFY_PATH,
            {
                "walletAddress": wallet_address,
                "action": action,
                "message": challenge,
                "signature": signature,
            },
        )
        if not data.get("success") or not data.get("sessionId"):
            raise BackendError(data.get("message") or "Wallet action verification failed")
        return data["sessionId"]

    async def create_session(
        self,
        signer: WalletSigner,
        controls: dict[str, Any] | None = None,
        chain_id: int = 8453,
    ) -> str:
        """Prove wallet ownership and open a new agent session."""
        address = signer.address
        challenge = await self.request_nonce(address)
        signature = await signer.sign_message(challenge)
        if not signature:
            raise BackendError("Signature request was cancelled")
        auth_session = await self.verify_signature(address, challenge, signature)

        data = await self._post(
            CREATE_SESSION_PATH,
            {
                "walletAddress": address,
                "sessionId": auth_session,
                "context": "wallet",
                "controls": controls or {},
                "chainId": chain_id,
            },
        )
        session_id = data.get("sessionId") or data.get("agentSessionId")
        if not session_id:
            raise BackendError("No session ID returned from agent session creation")
        logger.info("Created agent session %s for %s", session_id, address)
        return session_id

    async def resume_session(
        self, wallet_address: str, started_at: int, chain_id: int = 8453
    ) -> tuple[str, list[Turn]]:
        """Reopen a past conversation. Returns the new session id and its turns."""
        data = await self._post(
            RESUME_PATH,
            {"walletAddress": wallet_address, "startedAt": started_at, "chainId": chain_id},
        )
        session_id = data.get("sessionId")
        if not session_id:
            raise BackendError("Failed to resume session")

        history = await self._get(HISTORY_PATH, {"wallet": wallet_address, "startedAt": started_at})
        return session_id, turns_from_history(history.get("messages") or [])


def parse_timestamp(value: Any) -> datetime.datetime:
    """Convert a history timestamp into an aware datetime.

    Accepts epoch milliseconds, ``{"_seconds": n}`` objects, and ISO
    strings. Anything else maps to now.
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    if isinstance(value, dict) and "_seconds" in value:
        value = value["_seconds"] * 1000
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)
        except (OverflowError, OSError, ValueError):
            return now
    if isinstance(value, str):
        try:
            parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return now
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=datetime.timezone.utc)
        return parsed
    return now


def turns_from_history(messages: list[dict[str, Any]]) -> list[Turn]:
    """Pair stored user/assistant messages into finalized turns."""
    turns: list[Turn] = []
    prompt: str | None = None
    prompt_time: datetime.datetime | None = None

    def close(answer: str | None, answered_at: datetime.datetime | None) -> None:
        created = prompt_time or answered_at or datetime.datetime.now(datetime.timezone.utc)
        turns.append(
            Turn(
                turn_id=uuid.uuid4().hex,
                prompt=prompt or "",
                created_at=created,
                state=TurnState.FINALIZED if answer is not None else TurnState.ABORTED,
                answer=(
                    AnswerMessage(text=answer, created_at=answered_at or created)
                    if answer is not None
                    else None
                ),
            )
        )

    for message in messages:
        content = message.get("content") or ""
        timestamp = parse_timestamp(message.get("timestamp"))
        if message.get("role") == "user":
            if prompt is not None:
                close(None, None)
            prompt, prompt_time = content, timestamp
        else:
            close(content, timestamp)
            prompt, prompt_time = None, None

    if prompt is not None:
        close(None, None)
    return turns
