"""
Socratic prompt construction.

Turns a ConversationContext into the system and user prompts sent to the
tutor LLM. The wording is tunable; the structure (problem, recent
conversation, adaptation hint keyed by stuck level) is what the rest of
the engine relies on.
"""

from typing import Optional

from socratic_math_tutor.session_state import (
    ConversationContext,
    DifficultyMode,
    ProblemRef,
    Role,
)

BASE_SYSTEM_PROMPT = """You are a patient math tutor following the Socratic method. Your goal is to guide students through problem-solving by asking thoughtful questions, not by providing direct answers.

Core Principles:
1. NEVER give direct answers - only guide through questions
2. Ask leading questions that help students discover solutions
3. Validate understanding at each step
4. Provide encouragement and positive reinforcement
5. If a student is stuck for more than 2 turns, provide a concrete hint (but still not the answer)

When the student reaches the correct final answer, confirm it clearly (for example "That's correct! You solved it.") and do not ask another question.

Remember: Your role is to guide, not to solve. Help the student discover the solution themselves."""

DIFFICULTY_GUIDANCE = {
    DifficultyMode.ELEMENTARY: "The student is in elementary school. Use simple words, short sentences and concrete examples with small numbers.",
    DifficultyMode.MIDDLE: "The student is in middle school. Use clear language and introduce math vocabulary gently.",
    DifficultyMode.HIGH: "The student is in high school. Use proper mathematical terminology and expect multi-step reasoning.",
    DifficultyMode.ADVANCED: "The student is advanced. Be concise, use precise notation and push for rigorous justification.",
}

ADAPTATION_HINTS = {
    0: "Context: The student is engaging well. Continue with guiding questions.",
    1: "Context: The student may need more guidance. Ask more specific, focused questions to help them progress.",
    2: "Context: The student has been stuck. Provide a concrete hint about the next step, but do NOT give the direct answer. Guide them with a specific action they should take.",
}

RECENT_WINDOW = 6  # last 3 exchanges


class SocraticPromptEngine:
    """Builds prompts for the tutor LLM."""

    def system_prompt(self, difficulty: DifficultyMode = DifficultyMode.MIDDLE) -> str:
        difficulty = DifficultyMode.parse(difficulty)
        return f"{BASE_SYSTEM_PROMPT}\n\nStudent level: {DIFFICULTY_GUIDANCE[difficulty]}"

    def adaptation_hint(self, stuck_level: int) -> str:
        if stuck_level in ADAPTATION_HINTS:
            return ADAPTATION_HINTS[stuck_level]
        return (
            f"Context: The student has been stuck for {stuck_level} turns. Provide a more direct hint "
            "about the approach or method they should use, but still do NOT give the answer. "
            "Be encouraging and help them understand why this approach works."
        )

    def format_problem(self, problem: Optional[ProblemRef]) -> str:
        if problem is None:
            return "The student has not shared a problem yet."
        formatted = problem.text
        if problem.problem_type:
            formatted += f"\nProblem Type: {problem.problem_type.replace('_', ' ')}"
        return formatted

    def build_context(self, context: ConversationContext) -> str:
        """Compose the user prompt for one tutor turn."""
        prompt = f"Problem: {self.format_problem(context.problem)}\n\n"

        recent = context.messages[-RECENT_WINDOW:]
        if recent:
            prompt += "Recent conversation:\n"
            for message in recent:
                speaker = "Student" if message.role == Role.USER else "Tutor"
                prompt += f"{speaker}: {message.content}\n"
        else:
            prompt += "This is the start of the conversation.\n"

        prompt += f"\n{self.adaptation_hint(context.stuck_count)}\n\n"
        prompt += "Respond with your next guiding question or hint. Keep it concise and focused."
        return prompt

    def initial_prompt(self, problem: Optional[ProblemRef]) -> str:
        return (
            f"The student has just shared this problem:\n{self.format_problem(problem)}\n\n"
            "Greet them briefly and ask one opening question that helps them identify "
            "what the problem is asking. Do not solve any part of it."
        )

    def fallback_opening(self, problem: Optional[ProblemRef]) -> str:
        """Static opening used when the LLM is unavailable."""
        if problem is None:
            return "Let's start working on this problem! What are we trying to find?"
        return (
            f"I see you're working on: {problem.text}\n\n"
            "Let's work through this together! What are we trying to find or solve in this problem?"
        )
