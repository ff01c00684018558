"""
Tool: Anthropic Task Generator
Purpose: Structure, classification and per-step estimates from Claude

Structure generation runs in a "creative" mode (configured temperature,
answers may vary between calls). Classification and step estimation run at
temperature 0 so identical input gives identical output.

Usage:
    from focusflow.tasks.anthropic_backend import AnthropicGenerator

    generator = AnthropicGenerator.from_config(config.generator)
    structure = await generator.generate_structure("clean the garage")

Dependencies:
    - anthropic
    - pydantic (response validation)
"""

import os
from typing import List, Optional

import anthropic

from focusflow.config_models import GeneratorSettingsConfig
from focusflow.errors import GeneratorCallFailed, GeneratorUnavailable
from focusflow.learning import ENGAGEMENT_LEVELS, TASK_CATEGORIES
from focusflow.logging_config import get_logger

from . import STEP_DIFFICULTIES, USER_PACES
from .generator import (
    Classification,
    StepEstimate,
    StructureResult,
    extract_json,
    validate_payload,
)

logger = get_logger(__name__)


STRUCTURE_PROMPT = """You are a supportive task assistant. Break the task into small, concrete, actionable steps.

Guidelines:
- Each step is a single, clear action starting with a verb
- Steps are ordered logically, easiest starting point first
- Prefer shorter steps (5-15 minutes) over longer ones
- Include "getting started" steps when relevant (gather materials, open app, etc.)
- At most {max_steps} steps

Respond with JSON only:
{{"name": "Clean title for the task", "steps": ["...", "..."]}}"""

CLASSIFY_PROMPT = """Classify this task for time estimation.

engagement: how the task is likely to feel, one of: {engagements}
complexity_score: integer 1-10
category: one of: {categories}

If you cannot classify the task, respond with {{"error": "reason"}} instead of guessing.

Respond with JSON only:
{{"engagement": "...", "complexity_score": N, "category": "..."}}"""

ESTIMATE_PROMPT = """Estimate how many minutes this single step takes.

{pace}

minutes: integer 1-120
difficulty: one of: {difficulties}

Respond with JSON only:
{{"minutes": N, "difficulty": "..."}}"""


class AnthropicGenerator:
    """Claude-backed TaskGenerator.

    Args:
        api_key: Anthropic API key; GeneratorUnavailable is raised on first use if missing
        model: Model ID
        max_steps: Upper bound on generated steps
        max_tokens: Response token limit
        creative_temperature: Temperature for structure generation
        pace: slower | average | faster
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-3-5-haiku-20241022",
        max_steps: int = 7,
        max_tokens: int = 1024,
        creative_temperature: float = 1.0,
        pace: str = "average",
    ):
        if pace not in USER_PACES:
            raise ValueError(f"Invalid pace. Must be one of: {tuple(USER_PACES)}")
        self.model = model
        self.max_steps = max_steps
        self.max_tokens = max_tokens
        self.creative_temperature = creative_temperature
        self.pace = pace
        self._client = anthropic.AsyncAnthropic(api_key=api_key) if api_key else None

    @classmethod
    def from_config(cls, config: GeneratorSettingsConfig) -> "AnthropicGenerator":
        return cls(
            api_key=os.environ.get(config.api_key_env),
            model=config.model,
            max_steps=config.max_steps,
            max_tokens=config.max_tokens,
            creative_temperature=config.creative_temperature,
            pace=config.pace,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def _complete(self, stage: str, system: str, user: str, temperature: float) -> str:
        if self._client is None:
            raise GeneratorUnavailable("ANTHROPIC_API_KEY not set")

        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.AuthenticationError as e:
            raise GeneratorUnavailable(f"Anthropic authentication failed: {e}") from e
        except anthropic.APIError as e:
            logger.warning("generator call failed", stage=stage, error=str(e))
            raise GeneratorCallFailed(stage, str(e)) from e

        if not message.content:
            raise GeneratorCallFailed(stage, "empty response")
        return message.content[0].text

    async def generate_structure(self, task_text: str) -> StructureResult:
        text = await self._complete(
            "structure",
            STRUCTURE_PROMPT.format(max_steps=self.max_steps),
            f"Break down this task into manageable steps: {task_text}",
            self.creative_temperature,
        )
        result = validate_payload(StructureResult, extract_json(text, "structure"), "structure")
        if len(result.steps) > self.max_steps:
            result = StructureResult(name=result.name, steps=result.steps[: self.max_steps])
        return result

    async def classify(self, task_text: str, steps: List[str]) -> Classification:
        step_lines = "\n".join(f"- {s}" for s in steps)
        text = await self._complete(
            "classify",
            CLASSIFY_PROMPT.format(
                engagements=", ".join(ENGAGEMENT_LEVELS),
                categories=", ".join(TASK_CATEGORIES),
            ),
            f"Task: {task_text}\nSteps:\n{step_lines}",
            0.0,
        )
        data = extract_json(text, "classify")
        if "error" in data:
            raise GeneratorCallFailed("classify", f"model declined to classify: {data['error']}")
        return validate_payload(Classification, data, "classify")

    async def estimate_step(self, task_text: str, step_text: str) -> StepEstimate:
        text = await self._complete(
            "estimate",
            ESTIMATE_PROMPT.format(
                pace=USER_PACES[self.pace],
                difficulties=", ".join(STEP_DIFFICULTIES),
            ),
            f"Task: {task_text}\nStep: {step_text}",
            0.0,
        )
        return validate_payload(StepEstimate, extract_json(text, "estimate"), "estimate")
