import asyncio

import pytest

from bridgescore.assistant_client import RunHandle
from bridgescore.errors import RunTerminalError, RunTimeoutError, ScoringCancelledError
from bridgescore.run_poller import PollState, RunPoller

from tests.helpers import FakeAssistantService, make_poller


def _started_run(service, statuses):
    service.run_statuses = {0: statuses}

    async def start():
        conversation_id = await service.create_conversation()
        run = await service.start_run(conversation_id, "asst_123")
        return conversation_id, run

    return start


class TestRunPoller:
    def setup_method(self):
        self.service = FakeAssistantService(replies=["{}"])

    def _wait(self, statuses, poller=None, cancel_event=None):
        poller = poller or make_poller()
        start = _started_run(self.service, statuses)

        async def run():
            conversation_id, handle = await start()
            return await poller.wait(self.service, conversation_id, handle, cancel_event)

        return asyncio.run(run())

    def test_classify(self):
        assert RunPoller.classify("completed") == PollState.COMPLETED
        assert RunPoller.classify("failed") == PollState.FAILED
        assert RunPoller.classify("cancelled") == PollState.FAILED
        assert RunPoller.classify("expired") == PollState.FAILED
        assert RunPoller.classify("incomplete") == PollState.FAILED
        assert RunPoller.classify("queued") == PollState.PENDING
        assert RunPoller.classify("in_progress") == PollState.PENDING
        assert RunPoller.classify("requires_action") == PollState.PENDING

    def test_completes_after_polling(self):
        run = self._wait(["queued", "in_progress", "in_progress", "completed"])

        assert run.status == "completed"
        assert self.service.status_checks == 3

    def test_already_completed_does_not_poll(self):
        run = self._wait(["completed"])

        assert run.status == "completed"
        assert self.service.status_checks == 0

    @pytest.mark.parametrize("terminal", ["failed", "cancelled", "expired", "incomplete"])
    def test_terminal_failure(self, terminal):
        with pytest.raises(RunTerminalError) as exc_info:
            self._wait(["in_progress", "in_progress", terminal])

        assert exc_info.value.status == terminal
        assert exc_info.value.run_id == "run_0"

    def test_attempt_cap(self):
        with pytest.raises(RunTimeoutError):
            self._wait(["in_progress"], poller=make_poller(max_attempts=3))

        assert self.service.status_checks == 3

    def test_deadline(self):
        ticks = iter([0.0, 5.0, 11.0, 20.0, 30.0])

        async def no_sleep(seconds):
            return None

        poller = RunPoller(poll_interval=0, max_attempts=100, timeout=10, clock=lambda: next(ticks), sleep=no_sleep)

        with pytest.raises(RunTimeoutError) as exc_info:
            self._wait(["queued"], poller=poller)

        assert isinstance(exc_info.value, TimeoutError)
        assert self.service.status_checks == 1

    def test_cancel_event_set_before_polling(self):
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(ScoringCancelledError):
            self._wait(["in_progress", "completed"], cancel_event=cancel_event)

        assert self.service.status_checks == 0

    def test_cancel_during_pause_skips_next_poll(self):
        poller = RunPoller(poll_interval=5, max_attempts=10, timeout=60)
        cancel_event = asyncio.Event()
        start = _started_run(self.service, ["queued", "completed"])

        async def run():
            conversation_id, handle = await start()
            asyncio.get_running_loop().call_later(0.01, cancel_event.set)
            return await poller.wait(self.service, conversation_id, handle, cancel_event)

        with pytest.raises(ScoringCancelledError):
            asyncio.run(run())

        assert self.service.status_checks == 0

    def test_cancel_event_not_set_still_completes(self):
        run = self._wait(["queued", "completed"], cancel_event=asyncio.Event())

        assert run.status == "completed"

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("BRIDGESCORE_POLL_INTERVAL", "0.25")
        monkeypatch.setenv("BRIDGESCORE_MAX_POLL_ATTEMPTS", "7")
        monkeypatch.setenv("BRIDGESCORE_RUN_TIMEOUT", "42")

        poller = RunPoller()

        assert poller.poll_interval == 0.25
        assert poller.max_attempts == 7
        assert poller.timeout == 42

    def test_failed_run_carries_last_error(self):
        with pytest.raises(RunTerminalError) as exc_info:
            asyncio.run(make_poller().wait(
                self.service, "thread_0", RunHandle(id="run_9", status="failed", last_error="rate_limit_exceeded")
            ))

        assert "rate_limit_exceeded" in str(exc_info.value)
