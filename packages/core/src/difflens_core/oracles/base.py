"""Base oracle implementing the Template Method pattern.

Every provider shares the same call algorithm:
    complete() → race against the cancellation signal
               → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

The oracle promises nothing about the shape of the text it returns. Turning
that text into comments is the parser's job, not the provider's.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from difflens_core.errors import ModelTimeoutError, ModelUnavailableError, OracleCancelledError

if TYPE_CHECKING:
    from difflens_core.cancellation import CancellationSignal

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 4096
_TIMEOUT_SECONDS = 120.0


class BaseOracle(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    TIMEOUT_SECONDS: float = _TIMEOUT_SECONDS

    def __init__(self, timeout_seconds: float | None = None, max_retries: int | None = None):
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else self.TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries if max_retries is not None else self.MAX_RETRIES)

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def complete(self, prompt: str, signal: CancellationSignal | None = None) -> str:
        """Send ``prompt`` to the model and return its raw text reply.

        Raises ModelTimeoutError, ModelUnavailableError, or
        OracleCancelledError when ``signal`` fires before the reply arrives.
        """
        if signal is None:
            return await self._call_with_retry(prompt)
        if signal.is_cancelled:
            raise OracleCancelledError("Review cancelled before the model call started")

        call = asyncio.ensure_future(self._call_with_retry(prompt))
        waiter = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()

        if not call.done() or call.cancelled():
            logger.debug("%s call abandoned on cancellation", self.__class__.__name__)
            raise OracleCancelledError("Review cancelled while waiting for the model")
        return call.result()

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, prompt: str) -> str:
        """Make a single API call and return the raw text response.

        Should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    async def _call_with_retry(self, prompt: str) -> str:
        """Retry _call_api with exponential backoff.

        A timeout is not retried: the next attempt would most likely time
        out as well and the caller has already waited the full budget.
        """
        name = self.__class__.__name__
        for attempt in range(self.max_retries):
            try:
                return await asyncio.wait_for(self._call_api(prompt), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                logger.error("%s API timed out after %.0fs", name, self.timeout_seconds)
                raise ModelTimeoutError(f"{name} did not respond within {self.timeout_seconds:.0f}s") from e
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error("%s API failed after %d attempts: %s", name, self.max_retries, e)
                    raise ModelUnavailableError(f"{name} failed after {self.max_retries} attempts: {e}") from e
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    name,
                    attempt + 1,
                    self.max_retries,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
        raise ModelUnavailableError(f"{name} was never called")  # pragma: no cover
