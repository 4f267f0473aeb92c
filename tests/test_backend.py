"""Tests for the session/auth backend client."""

import datetime
import json

import httpx
import pytest

from walletagent.backend import (
    BackendClient,
    WalletSigner,
    parse_timestamp,
    turns_from_history,
)
from walletagent.errors import BackendError, NoSessionError
from walletagent.session import SessionManager
from walletagent.simulated import scripted_factory
from walletagent.turn.models import TurnState


class FakeSigner(WalletSigner):
    def __init__(self, signature="0xsig"):
        self.signature = signature
        self.challenges = []

    @property
    def address(self):
        return "0xwallet"

    async def sign_message(self, challenge):
        self.challenges.append(challenge)
        return self.signature


def make_backend(routes, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        response = routes.get(request.url.path)
        if response is None:
            return httpx.Response(404, json={"error": "not found"})
        status, payload = response
        return httpx.Response(status, json=payload)

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://backend.test"
    )
    return BackendClient(client)


AUTH_ROUTES = {
    "/wallet/nonce": (200, {"message": "Sign this: 123"}),
    "/wallet/verify": (200, {"success": True, "sessionId": "auth-1"}),
    "/agent/session": (200, {"sessionId": "agent-1"}),
}


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_challenge_sign_verify_create(self):
        calls = []
        backend = make_backend(AUTH_ROUTES, calls)
        signer = FakeSigner()

        session_id = await backend.create_session(signer, controls={"x": 1}, chain_id=1)

        assert session_id == "agent-1"
        assert signer.challenges == ["Sign this: 123"]
        assert [c.url.path for c in calls] == ["/wallet/nonce", "/wallet/verify", "/agent/session"]
        verify = json.loads(calls[1].content)
        assert verify["signature"] == "0xsig"
        assert verify["message"] == "Sign this: 123"
        create = json.loads(calls[2].content)
        assert create["sessionId"] == "auth-1"
        assert create["chainId"] == 1
        assert create["controls"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_agent_session_id_alias(self):
        routes = dict(AUTH_ROUTES)
        routes["/agent/session"] = (200, {"agentSessionId": "agent-2"})
        backend = make_backend(routes)
        assert await backend.create_session(FakeSigner()) == "agent-2"

    @pytest.mark.asyncio
    async def test_rejected_signature(self):
        backend = make_backend(AUTH_ROUTES)
        with pytest.raises(BackendError):
            await backend.create_session(FakeSigner(signature=""))

    @pytest.mark.asyncio
    async def test_verification_failure(self):
        routes = dict(AUTH_ROUTES)
        routes["/wallet/verify"] = (200, {"success": False, "message": "bad signature"})
        backend = make_backend(routes)
        with pytest.raises(BackendError, match="bad signature"):
            await backend.create_session(FakeSigner())

    @pytest.mark.asyncio
    async def test_error_status(self):
        routes = dict(AUTH_ROUTES)
        routes["/wallet/nonce"] = (429, {"error": "slow down"})
        backend = make_backend(routes)
        with pytest.raises(BackendError) as excinfo:
            await backend.create_session(FakeSigner())
        assert excinfo.value.status_code == 429
        assert "slow down" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_manager_attaches_session(self):
        backend = make_backend(AUTH_ROUTES)
        manager = SessionManager(scripted_factory())
        await manager.create_session(backend, FakeSigner())
        assert manager.session_id == "agent-1"
        assert manager.wallet_address == "0xwallet"


HISTORY = [
    {"role": "user", "content": "balance?", "timestamp": 1700000000000},
    {"role": "assistant", "content": "1 ETH", "timestamp": {"_seconds": 1700000005}},
    {"role": "user", "content": "swap?", "timestamp": "2024-01-01T00:00:00Z"},
]


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_session(self):
        routes = {
            "/chat/resume": (200, {"sessionId": "agent-9"}),
            "/chat/session": (200, {"messages": HISTORY}),
        }
        calls = []
        backend = make_backend(routes, calls)
        session_id, turns = await backend.resume_session("0xwallet", 1700000000000)

        assert session_id == "agent-9"
        assert [t.prompt for t in turns] == ["balance?", "swap?"]
        assert calls[1].url.params["startedAt"] == "1700000000000"

    @pytest.mark.asyncio
    async def test_resume_failure(self):
        backend = make_backend({"/chat/resume": (200, {})})
        with pytest.raises(BackendError):
            await backend.resume_session("0xwallet", 1)

    @pytest.mark.asyncio
    async def test_manager_resume_from_backend(self):
        routes = {
            "/chat/resume": (200, {"sessionId": "agent-9"}),
            "/chat/session": (200, {"messages": HISTORY[:2]}),
        }
        manager = SessionManager(scripted_factory(), wallet_address="0xwallet")
        await manager.resume_from_backend(make_backend(routes), 1700000000000)
        session = manager.snapshot()
        assert session.session_id == "agent-9"
        assert session.turns[0].answer.text == "1 ETH"

    @pytest.mark.asyncio
    async def test_manager_resume_needs_wallet(self):
        manager = SessionManager(scripted_factory())
        with pytest.raises(NoSessionError):
            await manager.resume_from_backend(make_backend({}), 1)


class TestHistoryConversion:
    def test_pairs_messages(self):
        turns = turns_from_history(HISTORY)
        first, second = turns
        assert first.state is TurnState.FINALIZED
        assert first.answer.text == "1 ETH"
        assert first.created_at == datetime.datetime.fromtimestamp(
            1700000000, tz=datetime.timezone.utc
        )
        assert second.answer is None
        assert second.state is TurnState.ABORTED

    def test_orphan_assistant_message(self):
        turns = turns_from_history([{"role": "assistant", "content": "Welcome back"}])
        assert turns[0].prompt == ""
        assert turns[0].answer.text == "Welcome back"

    def test_empty_history(self):
        assert turns_from_history([]) == []


class TestParseTimestamp:
    def test_milliseconds(self):
        ts = parse_timestamp(1700000000000)
        assert ts == datetime.datetime(2023, 11, 14, 22, 13, 20, tzinfo=datetime.timezone.utc)

    def test_seconds_object(self):
        assert parse_timestamp({"_seconds": 1700000000}) == parse_timestamp(1700000000000)

    def test_iso_string(self):
        ts = parse_timestamp("2024-01-01T00:00:00Z")
        assert ts == datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

    def test_naive_iso_string_is_utc(self):
        ts = parse_timestamp("2024-01-01T12:00:00")
        assert ts.tzinfo is not None

    @pytest.mark.parametrize("value", [None, "garbage", True, [1]])
    def test_fallback_to_now(self, value):
        before = datetime.datetime.now(datetime.timezone.utc)
        assert parse_timestamp(value) >= before
