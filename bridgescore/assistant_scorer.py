import asyncio
import json
import logging
from typing import List, Optional, Tuple

from .assistant_client import AssistantService
from .errors import RemoteScoringError, ResponseParseError, ScoringCancelledError
from .response_parser import Err, parse_coaching_reply, parse_step_reply
from .run_poller import RunPoller
from .schemas import (
    BridgeStep, CallScore, Coaching, ScoringMethod, StepScore, default_coaching, rubric_for_step, sort_steps
)

logger = logging.getLogger(__name__)


STEP_PROMPT_TEMPLATE = """You are scoring one step of a sales call using the Bridge Selling methodology.

Step: {name}
Weight: {weight}

Scoring rubric:
{rubric}

Award credit 1 (full), 0.5 (partial) or 0 (none). The color must follow the credit:
1 = "green", 0.5 = "yellow", 0 = "red".

Answer with a single JSON object and nothing else:
{{
    "credit": 0 or 0.5 or 1,
    "color": "green" or "yellow" or "red",
    "notes": "1-2 sentences citing what the salesperson did or missed",
    "reasoning": "why this credit was awarded"
}}

Transcript:
{transcript}"""


COACHING_PROMPT_TEMPLATE = """You are a sales coach reviewing a call scored with the Bridge Selling methodology.

Step results:
{step_results}

Using the transcript and the step results, give the salesperson coaching feedback.

Answer with a single JSON object and nothing else:
{{
    "thingsTheyDidWell": ["strength 1", "strength 2", "strength 3"],
    "areasForImprovement": [
        {{"area": "short title", "howToImprove": "specific, actionable advice", "bridgeStep": "step key"}},
        {{"area": "short title", "howToImprove": "specific, actionable advice", "bridgeStep": "step key"}},
        {{"area": "short title", "howToImprove": "specific, actionable advice", "bridgeStep": "step key"}}
    ]
}}

Exactly 3 strengths and 3 improvement areas. Use the step keys listed above for bridgeStep.

Transcript:
{transcript}"""


class RemoteAssistantScorer:
    """Scores a call step by step with an external assistant, then asks for coaching.

    Steps run strictly one after another, each in its own conversation. Any
    failure while scoring a step aborts the whole call; coaching failures fall
    back to a fixed default so a scored call always carries coaching.
    """

    def __init__(self, service: AssistantService, assistant_id: str, poller: Optional[RunPoller] = None):
        if not assistant_id:
            raise ValueError("assistant_id is required")
        self.service = service
        self.assistant_id = assistant_id
        self.poller = poller or RunPoller()

    async def score(
        self,
        transcript: str,
        bridge_steps: List[BridgeStep],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CallScore:
        steps = sort_steps(bridge_steps)

        step_scores = []
        for step in steps:
            step_scores.append(await self.score_step(transcript, step, cancel_event))
            logger.info(f"Step {step.key}: credit {step_scores[-1].credit}")

        coaching = await self.synthesize_coaching(transcript, step_scores, cancel_event)

        result = CallScore.build(step_scores, ScoringMethod.REMOTE, coaching=coaching)
        result.check_matches_steps(steps)
        return result

    async def score_step(
        self,
        transcript: str,
        step: BridgeStep,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StepScore:
        prompt = self.build_step_prompt(transcript, step)
        reply, thread_id, run_id = await self._converse(prompt, cancel_event)

        result = parse_step_reply(reply, step)
        if isinstance(result, Err):
            logger.warning(f"Unusable reply for step {step.key} (thread {thread_id}): {result.error}")
            raise result.error

        return result.value.model_copy(update={
            "external_thread_ref": thread_id,
            "external_run_ref": run_id,
        })

    async def synthesize_coaching(
        self,
        transcript: str,
        step_scores: List[StepScore],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Coaching:
        prompt = self.build_coaching_prompt(transcript, step_scores)
        try:
            reply, thread_id, _ = await self._converse(prompt, cancel_event)
        except ScoringCancelledError:
            raise
        except RemoteScoringError as e:
            logger.warning(f"Coaching synthesis failed ({type(e).__name__}: {e}); using default coaching")
            return default_coaching()

        result = parse_coaching_reply(reply)
        if isinstance(result, Err):
            logger.warning(f"Unusable coaching reply (thread {thread_id}): {result.error}; using default coaching")
            return default_coaching()
        return result.value

    async def _converse(self, prompt: str, cancel_event: Optional[asyncio.Event]) -> Tuple[str, str, str]:
        """create conversation -> post -> run -> poll -> fetch reply"""
        if cancel_event is not None and cancel_event.is_set():
            raise ScoringCancelledError("Scoring cancelled before the conversation started")
        thread_id = await self.service.create_conversation()
        await self.service.post_message(thread_id, prompt)
        run = await self.service.start_run(thread_id, self.assistant_id)
        run = await self.poller.wait(self.service, thread_id, run, cancel_event)

        messages = await self.service.list_messages(thread_id)
        reply = next((m.content for m in messages if m.role == "assistant"), None)
        if reply is None:
            raise ResponseParseError(f"No assistant reply in thread {thread_id}")
        return reply, thread_id, run.id

    def build_step_prompt(self, transcript: str, step: BridgeStep) -> str:
        return STEP_PROMPT_TEMPLATE.format(
            name=step.name,
            weight=step.weight,
            rubric=rubric_for_step(step),
            transcript=transcript,
        )

    def build_coaching_prompt(self, transcript: str, step_scores: List[StepScore]) -> str:
        results = [
            {
                "step": s.step,
                "stepName": s.step_name,
                "weight": s.weight,
                "credit": s.credit,
                "color": s.color.value,
                "notes": s.notes,
                "reasoning": s.reasoning,
            }
            for s in step_scores
        ]
        return COACHING_PROMPT_TEMPLATE.format(
            step_results=json.dumps(results, indent=2),
            transcript=transcript,
        )
