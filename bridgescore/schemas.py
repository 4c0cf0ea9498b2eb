import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic.alias_generators import to_camel


VALID_CREDITS = (0, 0.5, 1)


class ScoreColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class ScoringMethod(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


def color_for_credit(credit: float) -> ScoreColor:
    """Traffic-light color for a credit value (1 → green, 0.5 → yellow, 0 → red)"""
    if credit == 1:
        return ScoreColor.GREEN
    if credit == 0.5:
        return ScoreColor.YELLOW
    return ScoreColor.RED


def normalize_credit(value: Any) -> float:
    """Return the canonical credit for value or raise ValueError"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"credit must be a number, got {type(value).__name__}")
    if value not in VALID_CREDITS:
        raise ValueError(f"credit must be one of 0, 0.5, 1; got {value}")
    return 0.5 if value == 0.5 else int(value)


def weighted_total(step_scores: Iterable["StepScore"]) -> int:
    """Weighted sum of credits, rounded half-up"""
    raw = sum(s.weight * s.credit for s in step_scores)
    return int(math.floor(raw + 0.5))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase JSON field names"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BridgeStep(CamelModel):
    key: str = Field(..., min_length=1, description="Unique step key, e.g. pinpoint_pain")
    name: str = Field(..., description="Display name, e.g. Pinpoint Pain")
    weight: int = Field(..., gt=0, description="Positive integer weight")
    order: int = Field(..., description="Position in the rubric")
    custom_prompt: Optional[str] = Field(None, description="Rubric text sent to the assistant for this step")


class StepScore(CamelModel):
    step: str = Field(..., description="BridgeStep key")
    step_name: str = Field(..., description="BridgeStep name")
    weight: int = Field(..., gt=0)
    credit: float = Field(..., description="0, 0.5 or 1")
    color: Optional[ScoreColor] = Field(None, description="Derived from credit")
    notes: str = Field(..., description="Evidence behind the credit")
    reasoning: Optional[str] = None
    external_thread_ref: Optional[str] = Field(None, description="Assistant conversation id")
    external_run_ref: Optional[str] = Field(None, description="Assistant run id")

    @field_validator("credit", mode="before")
    @classmethod
    def _check_credit(cls, value):
        return normalize_credit(value)

    @model_validator(mode="after")
    def _derive_color(self):
        expected = color_for_credit(self.credit)
        if self.color is None:
            self.color = expected
        elif self.color != expected:
            raise ValueError(f"color {self.color.value} does not match credit {self.credit}")
        return self


class ImprovementArea(CamelModel):
    area: str
    how_to_improve: str
    bridge_step: str


class Coaching(CamelModel):
    things_they_did_well: List[str] = Field(default_factory=list)
    areas_for_improvement: List[ImprovementArea] = Field(default_factory=list)


class CallScore(CamelModel):
    total: int = Field(..., ge=0)
    step_scores: List[StepScore] = Field(..., description="Ordered per BridgeStep.order")
    coaching: Optional[Coaching] = None
    scoring_method: ScoringMethod
    scored_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_invariants(self):
        keys = [s.step for s in self.step_scores]
        if len(keys) != len(set(keys)):
            raise ValueError(f"duplicate step keys in step scores: {keys}")
        expected = weighted_total(self.step_scores)
        if self.total != expected:
            raise ValueError(f"total {self.total} does not match weighted credits ({expected})")
        return self

    @classmethod
    def build(cls, step_scores: List[StepScore], scoring_method: ScoringMethod,
              coaching: Optional[Coaching] = None) -> "CallScore":
        return cls(
            total=weighted_total(step_scores),
            step_scores=step_scores,
            coaching=coaching,
            scoring_method=scoring_method,
            scored_at=utc_now(),
        )

    def check_matches_steps(self, bridge_steps: List[BridgeStep]) -> None:
        """Raise ValueError unless step scores follow the configured steps exactly"""
        expected = [s.key for s in sort_steps(bridge_steps)]
        actual = [s.step for s in self.step_scores]
        if actual != expected:
            raise ValueError(f"step scores {actual} do not match configured steps {expected}")

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RemoteCredentials(CamelModel):
    assistant_id: str
    api_key: SecretStr


class TenantScoringConfig(CamelModel):
    tenant_id: str
    assistant_id: Optional[str] = None
    api_key: Optional[SecretStr] = None
    enabled: bool = False
    bridge_steps: List[BridgeStep] = Field(default_factory=lambda: default_bridge_steps())

    @field_validator("bridge_steps")
    @classmethod
    def _check_steps(cls, steps: List[BridgeStep]) -> List[BridgeStep]:
        if not steps:
            raise ValueError("bridge_steps must not be empty")
        keys = [s.key for s in steps]
        if len(keys) != len(set(keys)):
            raise ValueError(f"duplicate bridge step keys: {keys}")
        return steps


class ScoringRoute(BaseModel):
    """Outcome of config resolution: which path to take and with what"""
    method: ScoringMethod
    bridge_steps: List[BridgeStep]
    credentials: Optional[RemoteCredentials] = None
    reason: str = ""

    @property
    def is_remote(self) -> bool:
        return self.method == ScoringMethod.REMOTE and self.credentials is not None


class ScoringContext(BaseModel):
    transcript: str
    org_or_client_id: str
    remote_credentials: Optional[RemoteCredentials] = None


class CallRecord(CamelModel):
    """A stored call as read back from the storage layer"""
    call_id: str
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    transcript: str = ""
    status: str = "pending"
    score: Optional[CallScore] = None


class RescoreAuditEntry(CamelModel):
    call_id: str
    old_total: Optional[int] = None
    new_total: int
    old_method: Optional[ScoringMethod] = None
    new_method: ScoringMethod
    actor_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


def sort_steps(bridge_steps: List[BridgeStep]) -> List[BridgeStep]:
    return sorted(bridge_steps, key=lambda s: s.order)


# =============================================================================
# CANONICAL BRIDGE SELLING RUBRIC
# =============================================================================

DEFAULT_BRIDGE_STEP_SPECS = [
    ("pinpoint_pain", "Pinpoint Pain", 5),
    ("qualify", "Qualify", 3),
    ("solution_success", "Solution Success", 3),
    ("qa", "Q&A", 3),
    ("next_steps", "Next Steps", 3),
    ("close_or_schedule", "Close or Schedule", 3),
]


def default_bridge_steps() -> List[BridgeStep]:
    return [
        BridgeStep(key=key, name=name, weight=weight, order=i)
        for i, (key, name, weight) in enumerate(DEFAULT_BRIDGE_STEP_SPECS, 1)
    ]


GENERIC_STEP_PROMPT = "Evaluate this step of the Bridge Selling process."

DEFAULT_STEP_PROMPTS = {
    "pinpoint_pain": """Look for evidence that the salesperson identified and explored the customer's pain points:
- Did they ask discovery questions about problems/challenges?
- Did they dig deeper into the pain to understand impact?
- Did they quantify the cost of the problem?
Score: 1 = Excellent pain discovery, 0.5 = Some pain discussion, 0 = No meaningful pain discovery""",

    "qualify": """Evaluate if the salesperson qualified the prospect on Budget, Authority, and Timeline:
- Budget: Did they discuss investment/cost expectations?
- Authority: Did they identify decision makers?
- Timeline: Did they establish when a decision needs to be made?
Score: 1 = All 3 areas covered, 0.5 = 2 areas covered, 0 = 1 or no areas covered""",

    "solution_success": """Assess how well the salesperson presented their solution:
- Did they connect features to the customer's specific pain?
- Did they provide relevant case studies or success stories?
- Did they focus on outcomes and benefits?
Score: 1 = Strong solution presentation with proof, 0.5 = Basic solution presentation, 0 = Weak or no solution presentation""",

    "qa": """Evaluate how the salesperson handled questions and objections:
- Did they encourage questions?
- Did they address concerns thoroughly?
- Did they use questions to better understand objections?
Score: 1 = Excellent Q&A handling, 0.5 = Adequate handling, 0 = Poor or no Q&A""",

    "next_steps": """Look for clear next steps and mutual commitment:
- Did they propose specific next steps?
- Did they get commitment from the prospect?
- Are the next steps actionable and time-bound?
Score: 1 = Clear, committed next steps, 0.5 = Some next steps discussed, 0 = No clear next steps""",

    "close_or_schedule": """Evaluate the closing attempt or scheduling of follow-up:
- Did they attempt to close or advance the sale?
- Did they schedule a specific follow-up meeting?
- Did they create urgency or momentum?
Score: 1 = Strong close attempt or specific scheduling, 0.5 = Some closing effort, 0 = No closing attempt""",
}


def rubric_for_step(step: BridgeStep) -> str:
    """Custom prompt if the tenant set one, else the default for the key"""
    if step.custom_prompt and step.custom_prompt.strip():
        return step.custom_prompt.strip()
    return DEFAULT_STEP_PROMPTS.get(step.key, GENERIC_STEP_PROMPT)


def default_coaching() -> Coaching:
    """Coaching used when synthesis fails"""
    return Coaching(
        things_they_did_well=["Call analysis completed"],
        areas_for_improvement=[
            ImprovementArea(
                area="System Error",
                how_to_improve="Coaching feedback could not be generated for this call. "
                               "Review the step scores directly or rescore the call.",
                bridge_step="general",
            )
        ],
    )
