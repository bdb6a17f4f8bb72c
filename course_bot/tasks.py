import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class DeadLetter:
    name: str
    attempts: int
    error: str


class SideEffectRunner:
    """Runs fire-and-forget side effects (scoring, notifications, completion checks).

    ``spawn`` never raises into the caller. A failing effect is retried with
    exponential backoff and, once retries run out, parked in ``dead_letters``.
    """

    def __init__(self, retries=3, base_delay=1.0, sleep=asyncio.sleep):
        self.retries = retries
        self.base_delay = base_delay
        self._sleep = sleep
        self._tasks = set()
        self.dead_letters = []

    def spawn(self, name, factory, retries=None):
        """Schedule ``factory()`` (a coroutine function) on the running loop."""
        task = asyncio.get_running_loop().create_task(
            self._run(name, factory, self.retries if retries is None else retries)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, name, factory, retries):
        attempts = 0
        while True:
            attempts += 1
            try:
                return await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempts > retries:
                    logger.exception("Side effect %s failed after %d attempt(s)", name, attempts)
                    self.dead_letters.append(DeadLetter(name, attempts, repr(e)))
                    return None
                wait = 2 ** (attempts - 1) * self.base_delay
                logger.warning("Side effect %s failed (%s). Retrying in %ss...", name, e, wait)
                await self._sleep(wait)

    @property
    def pending(self):
        return len(self._tasks)

    async def drain(self):
        """Wait until every spawned effect, including ones spawned meanwhile, has finished."""
        while True:
            running = [t for t in self._tasks if not t.done()]
            if not running:
                return
            await asyncio.gather(*running, return_exceptions=True)
