"""
Completion Detector

Decides from transcript text alone whether a problem has actually been
solved, as opposed to the tutor merely praising a step or the student
mentioning a number.

Scoring stages, applied in order:
1. Veto: the latest tutor message is still asking something -> score 0.
2. Student final answer (+40).
3. Tutor confirmation tiers: strong +30, medium +20, weak +10/+20.
4. Completion phrase bonus: high-value +25, medium-value praise +15.
5. Conversation shape: +5 for enough exchanges, +5 for a closing pair.
6. Verdict and confidence.

The rules are data (see ANSWER_RULES, CONFIRMATION_RULES) so each one can
be unit tested and reordered explicitly. The detector never raises.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Pattern, Sequence, Tuple

from socratic_math_tutor import patterns
from socratic_math_tutor.session_state import Message, ProblemRef, Role


@dataclass(frozen=True)
class CompletionThresholds:
    """Empirically tuned point values and cut-offs. Adjust with product input."""
    answer_points: int = 40
    strong_confirmation_points: int = 30
    medium_confirmation_points: int = 20
    weak_confirmation_points: int = 10
    weak_with_solving_points: int = 20
    high_value_phrase_points: int = 25
    medium_value_phrase_points: int = 15
    exchange_bonus_points: int = 5
    closing_pair_bonus_points: int = 5

    min_exchanges: int = 3
    user_messages_scanned: int = 3
    tutor_messages_scanned: int = 3

    completed_with_answer: int = 50
    completed_without_answer: int = 70
    high_confidence_with_answer: int = 80
    high_confidence_without_answer: int = 70
    medium_confidence_with_answer: int = 60
    max_score: int = 100


@dataclass(frozen=True)
class CompletionScore:
    """Result of one evaluation. A pure function of the transcript snapshot."""
    score: int
    is_completed: bool
    confidence: str  # "low" | "medium" | "high"
    reasons: Tuple[str, ...] = field(default_factory=tuple)
    answer: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "is_completed": self.is_completed,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "answer": self.answer,
        }


# ==================== Rule tables ====================

@dataclass(frozen=True)
class AnswerRule:
    """A final-answer pattern. The first capture group is the answer literal."""
    name: str
    pattern: Pattern
    guard: Optional[Callable[[str], bool]] = None

    def match(self, content: str) -> Optional[str]:
        if self.guard is not None and not self.guard(content):
            return None
        found = self.pattern.search(content)
        if not found:
            return None
        return found.group(1)


def _short_or_hinted(content: str) -> bool:
    return (
        len(content) < patterns.SHORT_ANSWER_LENGTH
        or patterns.ANSWER_HINT_WORDS.search(content) is not None
    )


# Priority order matters: first match wins
ANSWER_RULES: Tuple[AnswerRule, ...] = (
    AnswerRule("bare_number", patterns.STANDALONE_NUMBER),
    AnswerRule("assignment", patterns.VARIABLE_ASSIGNMENT),
    AnswerRule("answer_phrase", patterns.ANSWER_PHRASE),
    AnswerRule("got_phrase", patterns.GOT_PHRASE),
    AnswerRule("embedded_integer", patterns.EMBEDDED_INTEGER, guard=_short_or_hinted),
)


@dataclass(frozen=True)
class ConfirmationRule:
    """
    A tutor confirmation tier.

    `points` names a CompletionThresholds field. Rules with `ends_scan`
    stop the scan over older tutor messages once they fire.
    """
    name: str
    applies: Callable[[str], bool]
    points: str
    reason: str
    ends_scan: bool


def _strong(content: str) -> bool:
    return patterns.STRONG_CONFIRMATION.search(content) is not None


def _medium(content: str) -> bool:
    if patterns.THATS_CORRECT.search(content):
        return True
    return bool(
        patterns.CORRECTNESS.search(content) and patterns.ANSWER_TOKENS.search(content)
    )


def _weak_with_solving(content: str) -> bool:
    return bool(patterns.PRAISE.search(content) and patterns.SOLVING.search(content))


def _weak(content: str) -> bool:
    return bool(
        patterns.PRAISE.search(content) and patterns.SOLVING_OR_ANSWER.search(content)
    )


# Descending tiers; at most one rule fires per message
CONFIRMATION_RULES: Tuple[ConfirmationRule, ...] = (
    ConfirmationRule(
        "strong", _strong, "strong_confirmation_points",
        "Tutor explicitly confirmed problem is solved", ends_scan=True,
    ),
    ConfirmationRule(
        "medium", _medium, "medium_confirmation_points",
        "Tutor confirmed answer/solution is correct", ends_scan=True,
    ),
    ConfirmationRule(
        "weak_solving", _weak_with_solving, "weak_with_solving_points",
        "Tutor praised the solution", ends_scan=False,
    ),
    ConfirmationRule(
        "weak", _weak, "weak_confirmation_points",
        "Tutor praised with confirmation", ends_scan=False,
    ),
)


# ==================== Detector ====================

class CompletionDetector:
    """
    Multi-signal heuristic completion scorer.

    Usage:
        detector = CompletionDetector()
        result = detector.evaluate(session.messages, session.problem)
        if result.is_completed: ...
    """

    def __init__(self, thresholds: Optional[CompletionThresholds] = None):
        self.thresholds = thresholds or CompletionThresholds()

    def evaluate(
        self,
        messages: Sequence[Message],
        problem: Optional[ProblemRef] = None,
    ) -> CompletionScore:
        """
        Score a transcript snapshot.

        Args:
            messages: Full transcript in insertion order
            problem: The problem being worked on (informational)

        Returns:
            CompletionScore with an ordered list of reasons
        """
        t = self.thresholds
        transcript = list(messages or [])
        user_messages = [m for m in transcript if m.role == Role.USER]
        tutor_messages = [m for m in transcript if m.role == Role.TUTOR]

        if not user_messages or not tutor_messages:
            return CompletionScore(0, False, "low", ("No conversation yet",))

        # 1. Veto
        if patterns.asks_question(tutor_messages[-1].content):
            return CompletionScore(
                0, False, "high",
                ("Tutor is still asking questions - problem not solved",),
            )

        reasons: List[str] = []
        score = 0

        # 2. Student final answer
        answer = self.find_student_answer(user_messages[-t.user_messages_scanned:])
        if answer is not None:
            score += t.answer_points
            reasons.append(f"Student provided answer: {answer}")
        else:
            reasons.append("No clear final answer from student")

        # 3. Tutor confirmation
        recent_tutor = tutor_messages[-t.tutor_messages_scanned:]
        points, confirmation_reasons = self.score_confirmation(recent_tutor)
        score += points
        reasons.extend(confirmation_reasons)

        # 4. Completion phrases
        points, phrase_reasons = self.score_completion_phrases(tutor_messages[-1])
        score += points
        reasons.extend(phrase_reasons)

        # 5. Conversation shape
        points, shape_reasons = self.score_conversation_shape(
            transcript, len(user_messages), len(tutor_messages)
        )
        score += points
        reasons.extend(shape_reasons)

        # 6. Verdict
        score = min(t.max_score, score)
        answered = answer is not None
        is_completed = (
            (score >= t.completed_with_answer and answered)
            or score >= t.completed_without_answer
        )

        return CompletionScore(
            score=score,
            is_completed=is_completed,
            confidence=self._confidence(score, answered),
            reasons=tuple(reasons),
            answer=answer,
        )

    def find_student_answer(self, user_messages: Sequence[Message]) -> Optional[str]:
        """Return the first answer literal found, scanning newest message first."""
        for message in reversed(list(user_messages)):
            content = patterns.normalize(message.content)
            if not content:
                continue
            for rule in ANSWER_RULES:
                literal = rule.match(content)
                if literal is not None:
                    return literal
        return None

    def score_confirmation(self, tutor_messages: Sequence[Message]) -> Tuple[int, List[str]]:
        points = 0
        reasons: List[str] = []

        for message in reversed(list(tutor_messages)):
            content = patterns.normalize(message.content)
            rule = next((r for r in CONFIRMATION_RULES if r.applies(content)), None)
            if rule is None:
                continue
            points += getattr(self.thresholds, rule.points)
            reasons.append(rule.reason)
            if rule.ends_scan:
                break

        return points, reasons

    def score_completion_phrases(self, last_tutor_message: Message) -> Tuple[int, List[str]]:
        content = patterns.normalize(last_tutor_message.content)

        phrase = patterns.find_any_phrase(patterns.HIGH_VALUE_PHRASES, content)
        if phrase:
            return (
                self.thresholds.high_value_phrase_points,
                [f'Found completion phrase: "{phrase}"'],
            )

        phrase = patterns.find_any_phrase(patterns.MEDIUM_VALUE_PHRASES, content)
        if phrase and patterns.COMPLETION_CORRECTNESS.search(content):
            return (
                self.thresholds.medium_value_phrase_points,
                [f'Found praise with confirmation: "{phrase}"'],
            )

        return 0, []

    def score_conversation_shape(
        self,
        transcript: Sequence[Message],
        user_count: int,
        tutor_count: int,
    ) -> Tuple[int, List[str]]:
        t = self.thresholds
        points = 0
        reasons: List[str] = []

        if min(user_count, tutor_count) >= t.min_exchanges:
            points += t.exchange_bonus_points
            reasons.append("Sufficient conversation exchanges")

        last_four = list(transcript)[-4:]
        if (
            len(last_four) >= 3
            and last_four[-2].role == Role.USER
            and last_four[-1].role == Role.TUTOR
        ):
            points += t.closing_pair_bonus_points
            reasons.append("Conversation ends with a closing exchange")

        return points, reasons

    def _confidence(self, score: int, answered: bool) -> str:
        t = self.thresholds
        if (score >= t.high_confidence_with_answer and answered) or (
            score >= t.high_confidence_without_answer and not answered
        ):
            return "high"
        if score >= t.medium_confidence_with_answer and answered:
            return "medium"
        return "low"
