"""
Tool: Task Generator Contract
Purpose: What the estimation pipeline needs from a generative backend

Three calls, all async:

    generate_structure(task_text)        -> StructureResult   (creative, may vary)
    classify(task_text, steps)           -> Classification    (deterministic)
    estimate_step(task_text, step_text)  -> StepEstimate      (deterministic, once per step)

Backends raise GeneratorUnavailable when they cannot be used at all and
GeneratorCallFailed when one call fails. classify() must fail explicitly
rather than return a low-confidence guess.

RuleBasedGenerator is a keyword-driven backend for offline use and tests.
"""

import json
from typing import List, Protocol, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from focusflow.errors import GeneratorCallFailed
from focusflow.learning import ENGAGEMENT_LEVELS, TASK_CATEGORIES

from . import STEP_DIFFICULTIES

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# Result types
# =============================================================================


class StructureResult(BaseModel):
    model_config = ConfigDict(frozen=True)
    name: str = Field(min_length=1)
    steps: List[str] = Field(min_length=1)

    @field_validator("steps")
    @classmethod
    def _strip_steps(cls, steps: List[str]) -> List[str]:
        cleaned = [s.strip() for s in steps if s and s.strip()]
        if not cleaned:
            raise ValueError("at least one non-empty step is required")
        return cleaned


class Classification(BaseModel):
    model_config = ConfigDict(frozen=True)
    engagement: str
    complexity_score: int = Field(ge=1, le=10)
    category: str

    @field_validator("engagement")
    @classmethod
    def _check_engagement(cls, value: str) -> str:
        if value not in ENGAGEMENT_LEVELS:
            raise ValueError(f"engagement must be one of {ENGAGEMENT_LEVELS}")
        return value

    @field_validator("category")
    @classmethod
    def _check_category(cls, value: str) -> str:
        if value not in TASK_CATEGORIES:
            raise ValueError(f"category must be one of {TASK_CATEGORIES}")
        return value


class StepEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)
    minutes: int = Field(ge=1, le=120)
    difficulty: str = "medium"

    @field_validator("difficulty")
    @classmethod
    def _check_difficulty(cls, value: str) -> str:
        if value not in STEP_DIFFICULTIES:
            raise ValueError(f"difficulty must be one of {STEP_DIFFICULTIES}")
        return value


class TaskGenerator(Protocol):
    async def generate_structure(self, task_text: str) -> StructureResult: ...

    async def classify(self, task_text: str, steps: List[str]) -> Classification: ...

    async def estimate_step(self, task_text: str, step_text: str) -> StepEstimate: ...


# =============================================================================
# Parsing helpers
# =============================================================================


def extract_json(response_text: str, stage: str) -> dict:
    """Pull a JSON object out of a model response (tolerates markdown fences)."""
    text = response_text.strip()

    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1:
        raise GeneratorCallFailed(stage, "response contained no JSON object")

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise GeneratorCallFailed(stage, f"failed to parse response as JSON: {e}") from e

    if not isinstance(data, dict):
        raise GeneratorCallFailed(stage, "response JSON was not an object")
    return data


def validate_payload(model: Type[ModelT], data: dict, stage: str) -> ModelT:
    """Validate a parsed payload, turning schema errors into a failed call."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise GeneratorCallFailed(stage, f"invalid response: {e.error_count()} validation error(s)") from e


# =============================================================================
# Rule-based backend
# =============================================================================

CATEGORY_KEYWORDS = {
    "cleaning": ("clean", "tidy", "vacuum", "laundry", "dishes", "wash"),
    "cooking": ("cook", "bake", "meal", "dinner", "lunch", "recipe"),
    "organizing": ("organize", "sort", "declutter", "closet", "garage"),
    "errands": ("buy", "shop", "groceries", "pick up", "drop off", "post office"),
    "work": ("report", "meeting", "project", "presentation", "client"),
    "self-care": ("exercise", "workout", "doctor", "dentist", "sleep", "walk"),
    "admin": ("tax", "bill", "form", "insurance", "email", "paperwork", "call"),
    "creative": ("draw", "paint", "write", "design", "music", "story"),
    "social": ("birthday", "party", "friend", "visit", "gift"),
}

DREADED_KEYWORDS = ("tax", "paperwork", "insurance", "bill", "dentist", "call")
TEDIOUS_KEYWORDS = ("clean", "laundry", "dishes", "sort", "form", "declutter")
ENGAGING_KEYWORDS = ("draw", "paint", "design", "music", "story", "party", "bake")

# (minutes, action verbs) - first match wins
STEP_VERB_MINUTES = (
    (3, ("open", "check", "send", "submit")),
    (5, ("find", "gather", "download", "upload", "book")),
    (10, ("call", "review", "schedule", "buy")),
    (15, ("write", "clean", "sort", "cook")),
    (25, ("create", "design", "draft", "organize")),
)


class RuleBasedGenerator:
    """Keyword heuristics standing in for the LLM. Fully deterministic."""

    async def generate_structure(self, task_text: str) -> StructureResult:
        text = task_text.lower()

        if "tax" in text:
            return StructureResult(
                name="File tax return",
                steps=[
                    "Find your income statement in your email",
                    "Gather receipts for deductions you want to claim",
                    "Open the tax portal and log in",
                    "Submit the return",
                ],
            )

        if "email" in text and ("send" in text or "write" in text):
            return StructureResult(
                name="Send email",
                steps=["Open your email client", "Write the email", "Review and send"],
            )

        if "call" in text or "phone" in text:
            return StructureResult(
                name="Make phone call",
                steps=[
                    "Find the phone number you need",
                    "Write down what you want to say",
                    "Call and talk it through",
                ],
            )

        return StructureResult(
            name=task_text.strip().capitalize(),
            steps=[f"Gather what you need for: {task_text.strip()}", f"Start working on: {task_text.strip()}"],
        )

    async def classify(self, task_text: str, steps: List[str]) -> Classification:
        text = task_text.lower()

        category = "other"
        for candidate, keywords in CATEGORY_KEYWORDS.items():
            if any(k in text for k in keywords):
                category = candidate
                break

        if any(k in text for k in DREADED_KEYWORDS):
            engagement = "dreaded"
        elif any(k in text for k in TEDIOUS_KEYWORDS):
            engagement = "tedious"
        elif any(k in text for k in ENGAGING_KEYWORDS):
            engagement = "engaging"
        else:
            engagement = "neutral"

        return Classification(
            engagement=engagement,
            complexity_score=min(10, 2 + len(steps)),
            category=category,
        )

    async def estimate_step(self, task_text: str, step_text: str) -> StepEstimate:
        first_word = step_text.strip().split(" ", 1)[0].lower()

        minutes = 10
        for candidate, verbs in STEP_VERB_MINUTES:
            if first_word in verbs:
                minutes = candidate
                break

        if minutes <= 5:
            difficulty = "easy"
        elif minutes <= 15:
            difficulty = "medium"
        else:
            difficulty = "hard"
        return StepEstimate(minutes=minutes, difficulty=difficulty)
