"""Scripted assistant service and reply builders shared by the test modules."""

import json
from typing import Dict, List, Optional

from bridgescore.assistant_client import AssistantMessage, AssistantService, RunHandle
from bridgescore.errors import RemoteTransportError
from bridgescore.run_poller import RunPoller
from bridgescore.schemas import default_bridge_steps


REMOTE_TENANT = "org-remote"
LOCAL_TENANT = "org-local"


def step_reply(credit, color=None, notes="Asked about the problem twice", reasoning="Clear discovery"):
    """A per-step assistant reply wrapped in some prose, as assistants tend to answer"""
    colors = {1: "green", 0.5: "yellow", 0: "red"}
    payload = {
        "credit": credit,
        "color": color or colors.get(credit, "red"),
        "notes": notes,
        "reasoning": reasoning,
    }
    return f"Here is my assessment:\n{json.dumps(payload)}\nLet me know if you need more."


def coaching_reply(strengths=3, areas=3):
    return json.dumps({
        "thingsTheyDidWell": [f"Strength {i}" for i in range(1, strengths + 1)],
        "areasForImprovement": [
            {"area": f"Area {i}", "howToImprove": f"Do thing {i}", "bridgeStep": "qualify"}
            for i in range(1, areas + 1)
        ],
    })


def full_remote_replies(credit=1):
    """Six step replies followed by a coaching reply"""
    return [step_reply(credit) for _ in default_bridge_steps()] + [coaching_reply()]


class FakeAssistantService(AssistantService):
    """
    Scripted assistant service. Conversation n answers with replies[n];
    its run walks through run_statuses[n] (default queued -> completed).
    """

    def __init__(self, replies: List[str], run_statuses: Optional[Dict[int, List[str]]] = None,
                 transport_error_on: Optional[set] = None):
        self.replies = list(replies)
        self.run_statuses = run_statuses or {}
        self.transport_error_on = transport_error_on or set()
        self.prompts: Dict[str, str] = {}
        self.pending_statuses: Dict[str, List[str]] = {}
        self.conversation_count = 0
        self.status_checks = 0
        self.closed = False

    def _index(self, conversation_id: str) -> int:
        return int(conversation_id.split("_")[1])

    async def create_conversation(self) -> str:
        conversation_id = f"thread_{self.conversation_count}"
        self.conversation_count += 1
        return conversation_id

    async def post_message(self, conversation_id: str, content: str) -> None:
        if self._index(conversation_id) in self.transport_error_on:
            raise RemoteTransportError("connection reset")
        self.prompts[conversation_id] = content

    async def start_run(self, conversation_id: str, assistant_id: str) -> RunHandle:
        index = self._index(conversation_id)
        statuses = list(self.run_statuses.get(index, ["queued", "completed"]))
        self.pending_statuses[conversation_id] = statuses[1:] or statuses[:1]
        return RunHandle(id=f"run_{index}", status=statuses[0])

    async def get_run_status(self, conversation_id: str, run_id: str) -> RunHandle:
        self.status_checks += 1
        remaining = self.pending_statuses[conversation_id]
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        last_error = "server_error" if status == "failed" else None
        return RunHandle(id=run_id, status=status, last_error=last_error)

    async def list_messages(self, conversation_id: str) -> List[AssistantMessage]:
        reply = self.replies[self._index(conversation_id)]
        return [
            AssistantMessage(role="assistant", content=reply),
            AssistantMessage(role="user", content=self.prompts[conversation_id]),
        ]

    async def close(self) -> None:
        self.closed = True


async def _no_sleep(seconds: float) -> None:
    return None


def make_poller(max_attempts: int = 10) -> RunPoller:
    return RunPoller(poll_interval=0, max_attempts=max_attempts, timeout=60, sleep=_no_sleep)


