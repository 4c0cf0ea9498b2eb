import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .coordinator import ScoringCoordinator
from .errors import CallNotFoundError, InvalidRequestError, PersistenceError
from .schemas import CallRecord, CallScore, RescoreAuditEntry

logger = logging.getLogger(__name__)


class CallRepository(ABC):
    """Storage layer for scored calls and the rescore audit trail"""

    @abstractmethod
    def get_call(self, call_id: str) -> CallRecord:
        """Return the stored call or raise CallNotFoundError"""

    @abstractmethod
    def upsert_score(self, call_id: str, score: CallScore) -> None:
        """Write the score onto the call, replacing any earlier score"""

    @abstractmethod
    def upsert_call(self, call: CallRecord) -> None:
        """Write the whole call, score included, creating it when missing"""

    @abstractmethod
    def append_audit(self, entry: RescoreAuditEntry) -> None:
        """Append one audit entry; entries are never updated"""


class InMemoryCallRepository(CallRepository):
    def __init__(self, calls: Optional[List[CallRecord]] = None):
        self.calls: Dict[str, CallRecord] = {c.call_id: c for c in (calls or [])}
        self.audit: List[RescoreAuditEntry] = []

    def add_call(self, call: CallRecord) -> None:
        self.calls[call.call_id] = call

    def get_call(self, call_id: str) -> CallRecord:
        try:
            return self.calls[call_id]
        except KeyError:
            raise CallNotFoundError(f"Call not found: {call_id}") from None

    def upsert_score(self, call_id: str, score: CallScore) -> None:
        existing = self.calls.get(call_id) or CallRecord(call_id=call_id)
        self.calls[call_id] = existing.model_copy(update={"score": score, "status": "scored"})

    def upsert_call(self, call: CallRecord) -> None:
        self.calls[call.call_id] = call.model_copy(update={"status": "scored"})

    def append_audit(self, entry: RescoreAuditEntry) -> None:
        self.audit.append(entry)


class ScoreRecorder:
    """Persists call scores and re-scores stored calls.

    Saves are last-writer-wins: two concurrent rescores of the same call both
    succeed and the later write is what remains stored.
    Repository calls made while rescoring run in worker threads so blocking
    storage clients do not stall the event loop.
    """

    def __init__(self, repository: CallRepository, coordinator: ScoringCoordinator):
        self.repository = repository
        self.coordinator = coordinator

    def save(self, call_id: str, score: CallScore) -> None:
        try:
            self.repository.upsert_score(call_id, score)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save score for call {call_id}: {e}") from e
        logger.info(f"Saved {score.scoring_method.value} score {score.total} for call {call_id}")

    def record(self, call: CallRecord) -> None:
        """Store a freshly scored call so it can be rescored later"""
        if call.score is None:
            raise InvalidRequestError(f"Call {call.call_id} has not been scored")
        try:
            self.repository.upsert_call(call)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save call {call.call_id}: {e}") from e
        logger.info(f"Saved call {call.call_id} with {call.score.scoring_method.value} score {call.score.total}")

    async def rescore(self, call_id: str, actor_id: Optional[str] = None) -> CallScore:
        try:
            call = await asyncio.to_thread(self.repository.get_call, call_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to load call {call_id}: {e}") from e

        if not call.organization_id:
            raise InvalidRequestError(f"Could not determine organization for call {call_id}")
        if not call.transcript.strip():
            raise InvalidRequestError(f"Call {call_id} has no transcript")

        score = await self.coordinator.score_call(call.transcript, call.organization_id)
        await asyncio.to_thread(self.save, call_id, score)

        entry = RescoreAuditEntry(
            call_id=call_id,
            old_total=call.score.total if call.score else None,
            new_total=score.total,
            old_method=call.score.scoring_method if call.score else None,
            new_method=score.scoring_method,
            actor_id=actor_id,
        )
        try:
            await asyncio.to_thread(self.repository.append_audit, entry)
        except Exception as e:
            logger.warning(f"Could not log rescore audit for call {call_id}: {e}")

        return score
