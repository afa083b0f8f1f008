"""
Stuck Counter

Derives a bounded "how stuck is the student" level from the most recent
turns. The level selects one of four adaptation tiers for the next
generated reply.
"""

from typing import Sequence

from socratic_math_tutor.patterns import is_short_or_confused
from socratic_math_tutor.session_state import Message, Role


class StuckCounter:
    """
    Algorithm (newest message first):
    - A run of N consecutive tutor messages adds min(N - 1, 2) once it is
      closed by a user message or by the start of the window.
    - Two or more short (< 10 chars) or confused user replies add 1.
    - The total is capped at MAX_LEVEL.
    """

    WINDOW_SIZE = 6  # last 3 exchanges
    MAX_LEVEL = 3
    MAX_RUN_CONTRIBUTION = 2
    WEAK_RESPONSE_THRESHOLD = 2

    def compute(self, messages: Sequence[Message]) -> int:
        """
        Compute the stuck level for a message window.

        Args:
            messages: Conversation messages in insertion order. Only the
                last WINDOW_SIZE are considered.

        Returns:
            Integer in [0, MAX_LEVEL]. Empty input yields 0.
        """
        window = list(messages or [])[-self.WINDOW_SIZE:]
        if not window:
            return 0

        stuck = 0
        tutor_run = 0
        weak_responses = 0

        for message in reversed(window):
            if message.role == Role.TUTOR:
                tutor_run += 1
                continue

            if is_short_or_confused(message.content):
                weak_responses += 1
            if tutor_run > 0:
                stuck += self._run_contribution(tutor_run)
            tutor_run = 0

        # Run reaching the start of the window
        if tutor_run > 1:
            stuck += self._run_contribution(tutor_run)

        if weak_responses >= self.WEAK_RESPONSE_THRESHOLD:
            stuck += 1

        return min(stuck, self.MAX_LEVEL)

    def _run_contribution(self, run_length: int) -> int:
        return min(run_length - 1, self.MAX_RUN_CONTRIBUTION)
