from __future__ import annotations

import asyncio


class CancellationSignal:
    """One-shot cancellation flag shared by the orchestrator and the oracle.

    ``cancel()`` is idempotent and may be called from any point in a run,
    including before it starts and after it has finished.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
