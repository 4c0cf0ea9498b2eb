import asyncio
import logging
import os
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from .assistant_client import AssistantService, RunHandle
from .errors import RunTerminalError, RunTimeoutError, ScoringCancelledError

logger = logging.getLogger(__name__)

COMPLETED_STATUS = "completed"
TERMINAL_FAILURE_STATUSES = frozenset({"failed", "cancelled", "expired", "incomplete"})


class PollState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class RunPoller:
    """Polls an assistant run until it reaches a terminal state.

    pending -> completed                 returns the final RunHandle
    pending -> failed                    raises RunTerminalError
    pending -> timed_out                 raises RunTimeoutError (attempt cap or deadline)
    pending -> cancelled                 raises ScoringCancelledError

    The optional cancel event is checked before every poll and also cuts the
    inter-poll sleep short.
    """

    def __init__(
        self,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.poll_interval = poll_interval if poll_interval is not None else float(os.getenv("BRIDGESCORE_POLL_INTERVAL", "1.0"))
        self.max_attempts = max_attempts if max_attempts is not None else int(os.getenv("BRIDGESCORE_MAX_POLL_ATTEMPTS", "300"))
        self.timeout = timeout if timeout is not None else float(os.getenv("BRIDGESCORE_RUN_TIMEOUT", "300"))
        self.clock = clock
        self.sleep = sleep

    @staticmethod
    def classify(status: str) -> PollState:
        if status == COMPLETED_STATUS:
            return PollState.COMPLETED
        if status in TERMINAL_FAILURE_STATUSES:
            return PollState.FAILED
        return PollState.PENDING

    async def wait(
        self,
        service: AssistantService,
        conversation_id: str,
        run: RunHandle,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunHandle:
        deadline = self.clock() + self.timeout
        attempts = 0

        while True:
            state = self.classify(run.status)
            if state == PollState.COMPLETED:
                return run
            if state == PollState.FAILED:
                logger.warning(f"Run {run.id} on {conversation_id} ended {run.status}: {run.last_error or 'no error detail'}")
                raise RunTerminalError(run.status, run_id=run.id, last_error=run.last_error)

            self._check_cancelled(cancel_event, conversation_id, run)
            if attempts >= self.max_attempts:
                raise RunTimeoutError(f"Run {run.id} still {run.status} after {attempts} polls")
            if self.clock() >= deadline:
                raise RunTimeoutError(f"Run {run.id} still {run.status} after {self.timeout:.0f}s")

            await self._pause(cancel_event)
            self._check_cancelled(cancel_event, conversation_id, run)
            attempts += 1
            run = await service.get_run_status(conversation_id, run.id)

    def _check_cancelled(self, cancel_event: Optional[asyncio.Event], conversation_id: str, run: RunHandle) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Run {run.id} on {conversation_id} cancelled by caller")
            raise ScoringCancelledError(f"Scoring cancelled while run {run.id} was {run.status}")

    async def _pause(self, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await self.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
