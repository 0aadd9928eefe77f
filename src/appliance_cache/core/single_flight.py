# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
from typing import Any, Awaitable, Callable, Dict


class SingleFlight:
    """Collapse concurrent calls for the same key into one in-flight call.

    The first caller for a key runs `fn`; callers arriving while it is in
    flight await the same future and receive its result or exception.
    """

    def __init__(self):
        self._pending: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._pending

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        pending = self._pending.get(key)
        if pending is not None:
            # shield so one waiter's cancellation does not cancel the shared call
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # retrieve it so an unawaited future does not log "exception never retrieved"
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._pending.pop(key, None)
