"""Interview profile models and loader.

A profile is the data half of the interview: instruction prompts sent at
each stage, the mic-check recognition phrases, the fixed delays and the
number of questions. Profiles are JSON files validated strictly.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator


DEFAULT_PROFILE_PATH = Path(__file__).resolve().parent / "profiles" / "react.json"


class MicCheckPhrases(BaseModel):
    """Phrases recognized in the model's reply during the mic check."""

    confirmation: tuple[str, ...] = Field(..., min_length=1)
    confusion: tuple[str, ...] = Field(default_factory=tuple)

    @field_validator("confirmation", "confusion")
    @classmethod
    def normalize_phrases(cls, phrases: tuple[str, ...]) -> tuple[str, ...]:
        normalized = tuple(phrase.strip().lower() for phrase in phrases)
        if any(not phrase for phrase in normalized):
            raise ValueError("mic check phrases must be non-empty")
        return normalized

    model_config = {"extra": "forbid"}


class InterviewTiming(BaseModel):
    """Fixed delays, in seconds."""

    mic_check_prompt_delay_seconds: float = Field(default=1.0, ge=0.0)
    user_resolution_delay_seconds: float = Field(default=1.0, ge=0.0)
    model_resolution_delay_seconds: float = Field(default=1.0, ge=0.0)

    model_config = {"extra": "forbid"}


class InterviewPrompts(BaseModel):
    """Instructions sent to the remote model at each stage."""

    mic_check: str = Field(..., min_length=1)
    first_question: str = Field(..., min_length=1)
    next_question: str = Field(..., min_length=1)
    evaluation: str = Field(..., min_length=1)

    @field_validator("next_question")
    @classmethod
    def validate_next_question_template(cls, template: str) -> str:
        if "{question_number}" not in template:
            raise ValueError("prompts.next_question must contain '{question_number}'")
        return template

    model_config = {"extra": "forbid"}


class InterviewProfile(BaseModel):
    """Complete interview definition."""

    profile_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    question_count: int = Field(default=10, ge=1)
    prompts: InterviewPrompts
    mic_check_phrases: MicCheckPhrases
    timing: InterviewTiming = Field(default_factory=InterviewTiming)

    @model_validator(mode="after")
    def validate_templates_render(self) -> "InterviewProfile":
        renderers = {
            "first_question": self.render_first_question,
            "next_question": lambda: self.render_next_question(1),
            "evaluation": self.render_evaluation,
        }
        for name, render in renderers.items():
            try:
                render()
            except (KeyError, IndexError, ValueError) as exc:
                raise ValueError(
                    f"prompts.{name} has an unknown placeholder: {exc}"
                ) from exc
        return self

    def render_first_question(self) -> str:
        """Render the interview-start prompt. May use {question_count}."""
        return self.prompts.first_question.format(question_count=self.question_count)

    def render_next_question(self, question_number: int) -> str:
        """Render the next-question prompt for a 1-based question number."""
        return self.prompts.next_question.format(
            question_number=question_number,
            question_count=self.question_count,
        )

    def render_evaluation(self) -> str:
        """Render the final evaluation prompt. May use {question_count}."""
        return self.prompts.evaluation.format(question_count=self.question_count)

    model_config = {"extra": "forbid"}


def resolve_profile_path(profile_path: str | None = None) -> Path:
    """Resolve explicit path, INTERVIEW_PROFILE_PATH, or the bundled default."""
    raw_path = (profile_path or os.environ.get("INTERVIEW_PROFILE_PATH") or "").strip()
    if not raw_path:
        return DEFAULT_PROFILE_PATH
    return Path(raw_path).expanduser()


def load_profile(profile_path: str | None = None) -> tuple[InterviewProfile, Path]:
    """Load an interview profile JSON from disk with strict validation."""
    resolved_path = resolve_profile_path(profile_path).resolve()
    if not resolved_path.exists():
        raise RuntimeError(
            f"Interview profile not found at '{resolved_path}'. "
            "Set INTERVIEW_PROFILE_PATH or pass --profile."
        )

    try:
        with open(resolved_path, "r", encoding="utf-8") as profile_file:
            raw_profile = json.load(profile_file)
    except OSError as exc:
        raise RuntimeError(
            f"Failed to read interview profile '{resolved_path}': {exc}"
        ) from exc
    except json.JSONDecodeError as exc:
        raise RuntimeError(
            f"Interview profile at '{resolved_path}' is not valid JSON: {exc}"
        ) from exc

    try:
        return InterviewProfile.model_validate(raw_profile), resolved_path
    except ValidationError as exc:
        raise RuntimeError(
            f"Interview profile validation failed for '{resolved_path}': {exc}"
        ) from exc
