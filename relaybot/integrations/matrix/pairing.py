"""
Matrix Device Pairing

First-time linking of the bot to a Matrix account. Both strategies expose an
async stream of PairingEvent objects that ends with exactly one terminal event:

- PasswordPairing: logs in with MATRIX_PASSWORD, retrying while rate limited.
- SsoPairing: serves a local callback, emits the homeserver's SSO login URL as
  a scannable code until the browser hands back a login token or time runs out.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional
from urllib.parse import quote

from aiohttp import web
from nio import AsyncClient, LoginError, LoginInfoResponse, LoginResponse

from ...config import PairingConfig

logger = logging.getLogger(__name__)

CODE = "code"
RATE_LIMITED = "rate_limited"
SUCCESS = "success"
TIMEOUT = "timeout"
ERROR = "error"

TERMINAL_EVENTS = frozenset({SUCCESS, TIMEOUT, ERROR})

LoginCallback = Callable[[LoginResponse], Awaitable[None]]


@dataclass(frozen=True)
class PairingEvent:
    event: str
    code: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.event in TERMINAL_EVENTS


class PasswordPairing:
    """Pair by logging in with the configured password."""

    def __init__(
        self,
        client: AsyncClient,
        password: str,
        device_name: str,
        on_login: LoginCallback,
        max_attempts: int = 3,
    ):
        self.client = client
        self.password = password
        self.device_name = device_name
        self.on_login = on_login
        self.max_attempts = max_attempts

    async def events(self) -> AsyncIterator[PairingEvent]:
        for attempt in range(self.max_attempts):
            logger.info(f"PasswordPairing: Login attempt {attempt + 1} for {self.client.user}")
            try:
                response = await self.client.login(self.password, device_name=self.device_name)
            except Exception as e:
                logger.error(f"PasswordPairing: Login attempt {attempt + 1} failed: {e}")
                yield PairingEvent(ERROR, error=str(e))
                return

            if isinstance(response, LoginResponse):
                await self.on_login(response)
                yield PairingEvent(SUCCESS)
                return

            if _is_rate_limited(response) and attempt < self.max_attempts - 1:
                delay = _retry_delay(response, attempt)
                logger.warning(
                    f"PasswordPairing: Rate limited on attempt {attempt + 1}. "
                    f"Waiting {delay}s before retry..."
                )
                yield PairingEvent(RATE_LIMITED, error=response.message)
                await asyncio.sleep(delay)
                continue

            yield PairingEvent(ERROR, error=getattr(response, "message", str(response)))
            return


class SsoPairing:
    """Pair through the homeserver's single sign-on page."""

    def __init__(
        self,
        client: AsyncClient,
        config: PairingConfig,
        device_name: str,
        on_login: LoginCallback,
    ):
        self.client = client
        self.config = config
        self.device_name = device_name
        self.on_login = on_login

    @property
    def redirect_url(self) -> str:
        if self.config.public_url:
            return self.config.public_url.rstrip("/") + "/"
        return f"http://{self.config.callback_host}:{self.config.callback_port}/"

    def sso_url(self) -> str:
        homeserver = self.client.homeserver.rstrip("/")
        return (
            f"{homeserver}/_matrix/client/v3/login/sso/redirect"
            f"?redirectUrl={quote(self.redirect_url, safe='')}"
        )

    async def events(self) -> AsyncIterator[PairingEvent]:
        info = await self.client.login_info()
        if not isinstance(info, LoginInfoResponse) or "m.login.sso" not in info.flows:
            yield PairingEvent(
                ERROR,
                error=f"Homeserver does not offer SSO login ({info}); set MATRIX_PASSWORD instead",
            )
            return

        loop = asyncio.get_running_loop()
        token_future: asyncio.Future = loop.create_future()
        try:
            runner = await self._start_callback_server(token_future)
        except OSError as e:
            yield PairingEvent(ERROR, error=f"Cannot start pairing callback server: {e}")
            return

        try:
            code = self.sso_url()
            deadline = loop.time() + self.config.timeout
            login_token = None
            while login_token is None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    yield PairingEvent(TIMEOUT)
                    return
                yield PairingEvent(CODE, code=code)
                try:
                    login_token = await asyncio.wait_for(
                        asyncio.shield(token_future),
                        timeout=min(self.config.refresh_interval, remaining),
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            await runner.cleanup()

        response = await self.client.login(token=login_token, device_name=self.device_name)
        if isinstance(response, LoginResponse):
            await self.on_login(response)
            yield PairingEvent(SUCCESS)
        else:
            yield PairingEvent(ERROR, error=getattr(response, "message", str(response)))

    async def _start_callback_server(self, token_future: asyncio.Future) -> web.AppRunner:
        async def handle_callback(request: web.Request) -> web.Response:
            login_token = request.query.get("loginToken")
            if not login_token:
                return web.Response(status=400, text="Missing loginToken")
            if not token_future.done():
                token_future.set_result(login_token)
            return web.Response(text="Relaybot is paired. You can close this page.")

        app = web.Application()
        app.router.add_get("/", handle_callback)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, self.config.callback_host, self.config.callback_port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        logger.debug(
            f"SsoPairing: Callback server listening on "
            f"{self.config.callback_host}:{self.config.callback_port}"
        )
        return runner


def _is_rate_limited(response) -> bool:
    return isinstance(response, LoginError) and (
        response.status_code == "M_LIMIT_EXCEEDED" or "429" in str(response.message)
    )


def _retry_delay(response, attempt: int) -> float:
    retry_after_ms = getattr(response, "retry_after_ms", None)
    if retry_after_ms:
        return retry_after_ms / 1000.0
    return min(60, 2 ** attempt * 5)
