import re
from typing import Callable, Dict, List, Optional, Tuple

from .schemas import BridgeStep, CallScore, ScoringMethod, StepScore, default_bridge_steps, sort_steps


# Keyword groups for each Bridge Selling step. Matching is substring-based on
# the lower-cased transcript and each keyword counts at most once.
PAIN_KEYWORDS = [
    'problem', 'issue', 'challenge', 'struggle', 'difficulty', 'pain',
    'frustrating', 'annoying', 'costing', 'losing', 'waste', 'inefficient'
]
PAIN_QUESTION_PATTERNS = [
    r'what.*problem', r'what.*challenge', r'what.*issue', r'what.*pain',
    r'how.*affecting', r'how.*impact', r'tell me about.*problem'
]

BUDGET_KEYWORDS = ['budget', 'cost', 'price', 'investment', 'spend', 'afford']
AUTHORITY_KEYWORDS = ['decision', 'approve', 'authority', 'manager', 'boss', 'team']
TIMELINE_KEYWORDS = ['when', 'timeline', 'deadline', 'urgent', 'priority']

SOLUTION_KEYWORDS = [
    'solution', 'solve', 'fix', 'address', 'help', 'benefit', 'advantage',
    'feature', 'capability', 'outcome', 'result'
]
EXAMPLE_KEYWORDS = ['example', 'case study', 'client', 'customer', 'similar', 'like you']

OBJECTION_KEYWORDS = ['concern', 'worry', 'hesitant', 'question', 'doubt', 'understand']

NEXT_STEP_PHRASES = [
    'next step', 'follow up', 'move forward', 'proceed', 'action',
    'proposal', 'contract', 'agreement', 'trial', 'pilot'
]
ACTION_PHRASES = ['will', 'going to', 'plan to', 'should', 'need to']

CLOSE_KEYWORDS = ['close', 'sign', 'agreement', 'deal', 'yes', 'approve']
SCHEDULE_KEYWORDS = ['schedule', 'meeting', 'call', 'appointment']
DATE_TIME_PATTERNS = [
    re.compile(r'\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b'),
    re.compile(r'\b\d{1,2}:\d{2}\b'),
    re.compile(r'\b(january|february|march|april|may|june|july|august|september|october|november|december)\b'),
    re.compile(r'\b\d{1,2}/\d{1,2}\b'),
    re.compile(r'\btomorrow\b'),
    re.compile(r'\bnext week\b'),
]

RuleResult = Tuple[float, str]


def _count_present(text: str, keywords: List[str]) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def _any_present(text: str, keywords: List[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def _flag(value: bool) -> str:
    return 'true' if value else 'false'


class LocalHeuristicScorer:
    """Deterministic keyword/pattern scorer for the six Bridge Selling steps.

    Pure: no I/O, no clock reads other than the ``scored_at`` stamp, and it
    never raises for any string input. Configured steps are matched to rules
    by key; the configured weight, name and order are used as given.
    """

    def __init__(self):
        self.pain_question_patterns = [re.compile(p) for p in PAIN_QUESTION_PATTERNS]
        self.rules: Dict[str, Callable[[str], RuleResult]] = {
            'pinpoint_pain': self.check_pinpoint_pain,
            'qualify': self.check_qualify,
            'solution_success': self.check_solution_success,
            'qa': self.check_qa,
            'next_steps': self.check_next_steps,
            'close_or_schedule': self.check_close_or_schedule,
        }

    def score(self, transcript: Optional[str], bridge_steps: Optional[List[BridgeStep]] = None) -> CallScore:
        text = (transcript or '').lower()
        steps = sort_steps(bridge_steps or default_bridge_steps())

        step_scores = []
        seen = set()
        for step in steps:
            if step.key in seen:
                continue
            seen.add(step.key)
            rule = self.rules.get(step.key)
            if rule is None:
                credit, notes = 0, f"No heuristic rule for step '{step.key}'"
            else:
                credit, notes = rule(text)
            step_scores.append(StepScore(
                step=step.key,
                step_name=step.name,
                weight=step.weight,
                credit=credit,
                notes=notes,
            ))

        return CallScore.build(step_scores, ScoringMethod.LOCAL)

    def check_pinpoint_pain(self, text: str) -> RuleResult:
        pain_count = _count_present(text, PAIN_KEYWORDS)
        question_count = sum(1 for p in self.pain_question_patterns if p.search(text))
        evidence = f"{pain_count} pain indicators, {question_count} pain questions"

        if pain_count >= 3 and question_count >= 2:
            return 1, f"Excellent pain discovery: {evidence}"
        if pain_count >= 2 or question_count >= 1:
            return 0.5, f"Some pain discovery: {evidence}"
        return 0, f"Minimal pain discovery: {evidence}"

    def check_qualify(self, text: str) -> RuleResult:
        covered = sum([
            _any_present(text, BUDGET_KEYWORDS),
            _any_present(text, AUTHORITY_KEYWORDS),
            _any_present(text, TIMELINE_KEYWORDS),
        ])

        if covered == 3:
            return 1, "Fully qualified: budget, authority, and timeline discussed"
        if covered == 2:
            return 0.5, f"Partially qualified: {covered}/3 areas covered"
        return 0, f"Poor qualification: {covered}/3 areas covered"

    def check_solution_success(self, text: str) -> RuleResult:
        solution_count = _count_present(text, SOLUTION_KEYWORDS)
        examples_given = _any_present(text, EXAMPLE_KEYWORDS)

        if solution_count >= 4 and examples_given:
            return 1, f"Strong solution presentation: {solution_count} solution terms, examples provided"
        if solution_count >= 2:
            return 0.5, f"Basic solution presentation: {solution_count} solution terms, examples: {_flag(examples_given)}"
        return 0, f"Weak solution presentation: {solution_count} solution terms, examples: {_flag(examples_given)}"

    def check_qa(self, text: str) -> RuleResult:
        question_count = text.count('?')
        objection_count = _count_present(text, OBJECTION_KEYWORDS)
        evidence = f"{question_count} questions, {objection_count} objection indicators"

        if question_count >= 5 and objection_count >= 2:
            return 1, f"Excellent Q&A: {evidence}"
        if question_count >= 3 or objection_count >= 1:
            return 0.5, f"Moderate Q&A: {evidence}"
        return 0, f"Poor Q&A: {evidence}"

    def check_next_steps(self, text: str) -> RuleResult:
        next_step_count = _count_present(text, NEXT_STEP_PHRASES)
        action_count = _count_present(text, ACTION_PHRASES)
        evidence = f"{next_step_count} next step indicators, {action_count} action items"

        if next_step_count >= 2 and action_count >= 2:
            return 1, f"Clear next steps: {evidence}"
        if next_step_count >= 1 or action_count >= 1:
            return 0.5, f"Some next steps: {evidence}"
        return 0, f"No clear next steps: {evidence}"

    def check_close_or_schedule(self, text: str) -> RuleResult:
        close_attempts = _count_present(text, CLOSE_KEYWORDS)
        schedule_count = _count_present(text, SCHEDULE_KEYWORDS)
        date_time_found = any(p.search(text) for p in DATE_TIME_PATTERNS)

        if close_attempts >= 1 or (schedule_count >= 1 and date_time_found):
            return 1, f"Strong close: {close_attempts} close attempts, scheduled: {_flag(date_time_found)}"
        if schedule_count >= 1:
            return 0.5, f"Partial close: {close_attempts} close attempts, {schedule_count} schedule mentions"
        return 0, f"No close: {close_attempts} close attempts, {schedule_count} schedule mentions"
