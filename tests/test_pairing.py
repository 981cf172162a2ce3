"""Tests for the password and SSO pairing strategies."""

import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from nio import AsyncClient, LoginError, LoginInfoResponse, LoginResponse

from relaybot.config import PairingConfig
from relaybot.integrations.matrix.pairing import (
    CODE,
    ERROR,
    RATE_LIMITED,
    SUCCESS,
    TIMEOUT,
    PairingEvent,
    PasswordPairing,
    SsoPairing,
)

HOMESERVER = "https://matrix.example.org"


async def collect(stream):
    return [event async for event in stream]


def login_ok() -> MagicMock:
    return MagicMock(spec=LoginResponse, user_id="@relaybot:example.org", device_id="DEV", access_token="syt")


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def nio_client() -> MagicMock:
    client = MagicMock(spec=AsyncClient)
    client.homeserver = HOMESERVER
    client.user = "@relaybot:example.org"
    client.login = AsyncMock(return_value=login_ok())
    client.login_info = AsyncMock(
        return_value=MagicMock(spec=LoginInfoResponse, flows=["m.login.sso", "m.login.token"])
    )
    return client


@pytest.fixture
def on_login() -> AsyncMock:
    return AsyncMock()


@pytest.mark.unit
class TestPairingEvent:

    @pytest.mark.parametrize("event", [SUCCESS, TIMEOUT, ERROR])
    def test_terminal_events(self, event):
        assert PairingEvent(event).is_terminal

    @pytest.mark.parametrize("event", [CODE, RATE_LIMITED])
    def test_non_terminal_events(self, event):
        assert not PairingEvent(event).is_terminal


@pytest.mark.unit
class TestPasswordPairing:

    @pytest.mark.asyncio
    async def test_successful_login(self, nio_client, on_login):
        pairing = PasswordPairing(nio_client, "hunter2", "relaybot", on_login)

        events = await collect(pairing.events())

        assert [e.event for e in events] == [SUCCESS]
        nio_client.login.assert_awaited_once_with("hunter2", device_name="relaybot")
        on_login.assert_awaited_once_with(nio_client.login.return_value)

    @pytest.mark.asyncio
    async def test_rate_limited_then_success(self, nio_client, on_login):
        nio_client.login.side_effect = [
            LoginError("Too many requests", status_code="M_LIMIT_EXCEEDED", retry_after_ms=1),
            login_ok(),
        ]
        pairing = PasswordPairing(nio_client, "hunter2", "relaybot", on_login)

        events = await collect(pairing.events())

        assert [e.event for e in events] == [RATE_LIMITED, SUCCESS]
        assert events[0].error == "Too many requests"
        assert nio_client.login.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limited_on_last_attempt_is_error(self, nio_client, on_login):
        nio_client.login.return_value = LoginError(
            "Too many requests", status_code="M_LIMIT_EXCEEDED", retry_after_ms=1
        )
        pairing = PasswordPairing(nio_client, "hunter2", "relaybot", on_login, max_attempts=2)

        events = await collect(pairing.events())

        assert [e.event for e in events] == [RATE_LIMITED, ERROR]
        on_login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wrong_password(self, nio_client, on_login):
        nio_client.login.return_value = LoginError("Invalid password", status_code="M_FORBIDDEN")
        pairing = PasswordPairing(nio_client, "wrong", "relaybot", on_login)

        events = await collect(pairing.events())

        assert events == [PairingEvent(ERROR, error="Invalid password")]
        nio_client.login.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_network_error(self, nio_client, on_login):
        nio_client.login.side_effect = OSError("Connection refused")
        pairing = PasswordPairing(nio_client, "hunter2", "relaybot", on_login)

        events = await collect(pairing.events())

        assert [e.event for e in events] == [ERROR]
        assert "Connection refused" in events[0].error


@pytest.mark.unit
class TestSsoPairing:

    @pytest.fixture
    def runner(self) -> MagicMock:
        runner = MagicMock()
        runner.cleanup = AsyncMock()
        return runner

    def test_sso_url_points_back_to_callback(self, nio_client, on_login):
        pairing = SsoPairing(nio_client, PairingConfig(callback_port=9000), "relaybot", on_login)

        assert pairing.sso_url() == (
            "https://matrix.example.org/_matrix/client/v3/login/sso/redirect"
            "?redirectUrl=http%3A%2F%2F127.0.0.1%3A9000%2F"
        )

    def test_public_url_used_as_redirect(self, nio_client, on_login):
        config = PairingConfig(public_url="https://bot.example.org/pair")
        pairing = SsoPairing(nio_client, config, "relaybot", on_login)

        assert pairing.redirect_url == "https://bot.example.org/pair/"

    @pytest.mark.asyncio
    async def test_homeserver_without_sso(self, nio_client, on_login):
        nio_client.login_info.return_value = MagicMock(spec=LoginInfoResponse, flows=["m.login.password"])
        pairing = SsoPairing(nio_client, PairingConfig(), "relaybot", on_login)

        events = await collect(pairing.events())

        assert [e.event for e in events] == [ERROR]
        assert "MATRIX_PASSWORD" in events[0].error

    @pytest.mark.asyncio
    async def test_code_refreshed_until_timeout(self, nio_client, on_login, runner):
        config = PairingConfig(refresh_interval=0.01, timeout=0.05)
        pairing = SsoPairing(nio_client, config, "relaybot", on_login)

        with patch.object(SsoPairing, "_start_callback_server", AsyncMock(return_value=runner)):
            events = await collect(pairing.events())

        codes = [e for e in events if e.event == CODE]
        assert len(codes) >= 2
        assert all(e.code == pairing.sso_url() for e in codes)
        assert events[-1].event == TIMEOUT
        runner.cleanup.assert_awaited_once()
        nio_client.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_login_token_completes_pairing(self, nio_client, on_login, runner):
        async def start_and_receive_token(self, token_future):
            token_future.set_result("login-token")
            return runner

        pairing = SsoPairing(nio_client, PairingConfig(), "relaybot", on_login)

        with patch.object(SsoPairing, "_start_callback_server", start_and_receive_token):
            events = await collect(pairing.events())

        assert [e.event for e in events] == [CODE, SUCCESS]
        nio_client.login.assert_awaited_once_with(token="login-token", device_name="relaybot")
        on_login.assert_awaited_once()
        runner.cleanup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_token_login_rejected(self, nio_client, on_login, runner):
        async def start_and_receive_token(self, token_future):
            token_future.set_result("stale-token")
            return runner

        nio_client.login.return_value = LoginError("Invalid login token", status_code="M_FORBIDDEN")
        pairing = SsoPairing(nio_client, PairingConfig(), "relaybot", on_login)

        with patch.object(SsoPairing, "_start_callback_server", start_and_receive_token):
            events = await collect(pairing.events())

        assert events[-1] == PairingEvent(ERROR, error="Invalid login token")
        on_login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_port_in_use(self, nio_client, on_login):
        pairing = SsoPairing(nio_client, PairingConfig(), "relaybot", on_login)

        with patch.object(
            SsoPairing, "_start_callback_server", AsyncMock(side_effect=OSError("Address already in use"))
        ):
            events = await collect(pairing.events())

        assert [e.event for e in events] == [ERROR]
        assert "Address already in use" in events[0].error


@pytest.mark.integration
class TestSsoCallbackServer:

    @pytest.mark.asyncio
    async def test_callback_delivers_login_token(self, nio_client, on_login):
        port = free_port()
        pairing = SsoPairing(nio_client, PairingConfig(callback_port=port), "relaybot", on_login)
        token_future = asyncio.get_running_loop().create_future()

        runner = await pairing._start_callback_server(token_future)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(f"http://127.0.0.1:{port}/") as response:
                    assert response.status == 400
                async with session.get(f"http://127.0.0.1:{port}/?loginToken=abc123") as response:
                    assert response.status == 200
        finally:
            await runner.cleanup()

        assert token_future.result() == "abc123"
