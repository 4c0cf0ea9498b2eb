import asyncio
import logging
from typing import Callable, Optional

from .assistant_client import AssistantService, OpenAIAssistantService
from .assistant_scorer import RemoteAssistantScorer
from .config_resolver import ConfigResolver
from .errors import ConfigurationError, InvalidRequestError
from .heuristic_scorer import LocalHeuristicScorer
from .run_poller import RunPoller
from .schemas import (
    CallScore, RemoteCredentials, ScoringContext, ScoringMethod, ScoringRoute, default_bridge_steps
)

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[RemoteCredentials], AssistantService]


class ScoringCoordinator:
    """Entry point of the scoring engine.

    Resolves the tenant's route, tries the remote assistant when configured
    and falls back to the local heuristic scorer on any failure. Scoring
    never raises; only caller misuse (an empty transcript or tenant id) does.
    Nothing is persisted here.
    """

    def __init__(
        self,
        resolver: ConfigResolver,
        local_scorer: Optional[LocalHeuristicScorer] = None,
        service_factory: Optional[ServiceFactory] = None,
        poller: Optional[RunPoller] = None,
    ):
        self.resolver = resolver
        self.local_scorer = local_scorer or LocalHeuristicScorer()
        self.service_factory = service_factory or OpenAIAssistantService.from_credentials
        self.poller = poller or RunPoller()

    async def score_call(
        self,
        transcript: str,
        org_or_client_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CallScore:
        if not isinstance(transcript, str) or not transcript.strip():
            raise InvalidRequestError("transcript is required")
        if not org_or_client_id:
            raise InvalidRequestError("organization id is required")

        # Tenant sources may block on network storage
        route = await asyncio.to_thread(self._resolve_route, org_or_client_id)

        if route.is_remote:
            context = ScoringContext(
                transcript=transcript,
                org_or_client_id=org_or_client_id,
                remote_credentials=route.credentials,
            )
            try:
                return await self._score_remote(context, route, cancel_event)
            except Exception as e:
                logger.warning(
                    f"Remote scoring failed for {org_or_client_id}, falling back to local: "
                    f"{type(e).__name__}: {e}"
                )

        return self.local_scorer.score(transcript, route.bridge_steps)

    def _resolve_route(self, org_or_client_id: str) -> ScoringRoute:
        try:
            return self.resolver.resolve(org_or_client_id)
        except ConfigurationError as e:
            logger.info(f"No remote configuration for {org_or_client_id} ({e}); scoring locally")
        except Exception as e:
            logger.error(f"Config resolution failed for {org_or_client_id}: {type(e).__name__}: {e}")
        return ScoringRoute(
            method=ScoringMethod.LOCAL,
            bridge_steps=default_bridge_steps(),
            reason="configuration unavailable",
        )

    async def _score_remote(
        self,
        context: ScoringContext,
        route: ScoringRoute,
        cancel_event: Optional[asyncio.Event],
    ) -> CallScore:
        credentials = context.remote_credentials
        async with self.service_factory(credentials) as service:
            scorer = RemoteAssistantScorer(service, credentials.assistant_id, poller=self.poller)
            return await scorer.score(context.transcript, route.bridge_steps, cancel_event)
