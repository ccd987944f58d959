"""Interactive authorization launcher for a locally running service.

``launch()`` prints (and optionally opens) the authorization URL, then waits
for the authorization server to redirect the browser to
``GET /auth/callback/{provider_id}``.  That route hands the full redirect URL
to ``complete()``, which wakes the waiting flow matched by the OAuth ``state``.
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from typing import Callable
from urllib.parse import parse_qsl, urlparse

from marksync.errors import AuthenticationError
from marksync.sync.auth_manager import AuthorizationLauncher

logger = logging.getLogger("marksync.sync.launcher")


def _state_of(url: str) -> str | None:
    return dict(parse_qsl(urlparse(url).query)).get("state")


class WebAuthLauncher(AuthorizationLauncher):
    """Browser-based launcher completed by the callback route."""

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        open_browser: bool = True,
        opener: Callable[[str], bool] = webbrowser.open,
    ) -> None:
        self._timeout = timeout_seconds
        self._open_browser = open_browser
        self._opener = opener
        self._pending: dict[str, asyncio.Future[str]] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def launch(self, url: str) -> str:
        state = _state_of(url)
        if not state:
            raise AuthenticationError("Authorization URL carries no state parameter")

        waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[state] = waiter
        logger.info("Waiting for authorization, open: %s", url)
        try:
            if self._open_browser:
                await asyncio.to_thread(self._opener, url)
            return await asyncio.wait_for(waiter, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise AuthenticationError("Authorization timed out", cancelled=True) from exc
        finally:
            self._pending.pop(state, None)

    def complete(self, redirect_url: str) -> bool:
        """Deliver a redirect URL. Returns False when no flow is waiting for it."""
        state = _state_of(redirect_url)
        waiter = self._pending.get(state) if state else None
        if waiter is None or waiter.done():
            logger.warning("Discarding authorization redirect with unknown state")
            return False
        waiter.set_result(redirect_url)
        return True
