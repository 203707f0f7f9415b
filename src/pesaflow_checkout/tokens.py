"""
Bearer token cache for gateway calls.

One token is shared by every request in the process. When it is missing or
about to expire, the first caller starts a credential exchange and everyone
else arriving meanwhile awaits that same exchange, so a burst of checkouts
costs a single /Auth/RequestToken call.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from pesaflow_core.constants import Timeouts
from pesaflow_core.exceptions import PesaflowAuthenticationError, PesaflowException

from .connectors.base import GatewayConnector
from .credentials import GatewayCredentials
from .models import AuthToken, utcnow

logger = logging.getLogger(__name__)


class TokenManager:
    """Caches the gateway bearer token and refreshes it single-flight."""

    def __init__(
        self,
        connector: GatewayConnector,
        credentials: GatewayCredentials,
        safety_margin: float = Timeouts.TOKEN_SAFETY_MARGIN,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._connector = connector
        self._credentials = credentials
        self._safety_margin = safety_margin
        self._clock = clock
        self._token: Optional[AuthToken] = None
        self._lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Future] = None
        self._exchange_task: Optional[asyncio.Task] = None
        self.exchange_count = 0

    @property
    def cached_token(self) -> Optional[AuthToken]:
        return self._token

    async def get_token(self, force_refresh: bool = False) -> AuthToken:
        """Return a token with more than the safety margin left.

        With `force_refresh` the cache is bypassed, but an exchange already in
        flight is still joined rather than duplicated.

        Raises:
            PesaflowAuthenticationError: the credential exchange failed
        """
        async with self._lock:
            token = self._token
            if not force_refresh and token is not None and token.is_usable(
                self._safety_margin, now=self._clock()
            ):
                return token

            future = self._inflight
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._inflight = future
                # Own task: cancelling the caller that started the exchange
                # must not fail everyone else waiting on it
                self._exchange_task = asyncio.create_task(self._exchange(future))

        return await asyncio.shield(future)

    async def _exchange(self, future: asyncio.Future) -> None:
        try:
            self.exchange_count += 1
            token = await self._connector.request_token(
                self._credentials.consumer_key,
                self._credentials.consumer_secret,
            )
        except PesaflowAuthenticationError as e:
            await self._finish(future, error=e)
        except PesaflowException as e:
            await self._finish(
                future,
                error=PesaflowAuthenticationError(
                    "Failed to authenticate with the payment gateway",
                    details={"cause": e.error_code},
                ),
            )
        except Exception as e:
            await self._finish(
                future,
                error=PesaflowAuthenticationError(
                    "Failed to authenticate with the payment gateway",
                    details={"cause": type(e).__name__},
                ),
            )
        except asyncio.CancelledError:
            await self._finish(
                future,
                error=PesaflowAuthenticationError("Credential exchange was interrupted"),
            )
            raise
        else:
            await self._finish(future, token=token)

    async def _finish(
        self,
        future: asyncio.Future,
        token: Optional[AuthToken] = None,
        error: Optional[Exception] = None,
    ) -> None:
        async with self._lock:
            if self._inflight is future:
                self._inflight = None
            if error is not None:
                self._token = None
                logger.warning(
                    "Gateway credential exchange failed",
                    extra={"error_type": type(error).__name__},
                )
                if not future.done():
                    future.set_exception(error)
                # Retrieved here so an exchange nobody else awaited does not warn
                future.exception()
            else:
                self._token = token
                logger.info(
                    "Gateway token refreshed",
                    extra={"expires_at": token.expires_at.isoformat()},
                )
                if not future.done():
                    future.set_result(token)

    async def invalidate(self, token: AuthToken) -> bool:
        """Drop the cached token if it is still `token`.

        A rejection reported against an older token must not evict a fresher
        one that another request has already obtained.
        """
        async with self._lock:
            if self._token is not None and self._token.value == token.value:
                self._token = None
                logger.info("Gateway token invalidated after rejection")
                return True
            return False
