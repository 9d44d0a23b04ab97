from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from quizportal.domain.errors import ExternalServiceError, ValidationError
from quizportal.domain.models import QuestionFields
from quizportal.domain.validation import build_question_fields, clean_level, clean_usertype
from quizportal.infra.ports.llm import LLMPort

logger = logging.getLogger(__name__)

MAX_GENERATED_QUESTIONS = 50
GENERATED_OPTION_COUNT = 4

_QUESTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["questionText", "options", "correctIndex", "explanation"],
    "properties": {
        "questionText": {"type": "string"},
        "options": {
            "type": "array",
            "items": {"type": "string"},
            "minItems": GENERATED_OPTION_COUNT,
            "maxItems": GENERATED_OPTION_COUNT,
        },
        "correctIndex": {"type": "integer", "minimum": 0},
        "explanation": {"type": "string"},
    },
}


def _generation_schema(count: int) -> dict[str, Any]:
    return {
        "type": "object",
        "required": ["questions"],
        "properties": {
            "questions": {
                "type": "array",
                "items": _QUESTION_SCHEMA,
                "minItems": count,
                "maxItems": count,
            },
        },
    }


_SYSTEM_PROMPT = """You are a quiz question generator. Generate {count} multiple-choice quiz questions based on the user's prompt.

Requirements:
- Each question must have exactly 4 options (A, B, C, D)
- One option must be clearly the correct answer
- Include an explanation for the correct answer
- Questions should be appropriate for level {level}
- Questions should be relevant for: {user_types}

Return ONLY valid JSON of the form {{"questions": [{{"questionText": "...", "options": ["...", "...", "...", "..."], "correctIndex": 0, "explanation": "..."}}]}}."""


@dataclass(frozen=True)
class GeneratedQuestion:
    question_text: str
    options: tuple[str, ...]
    correct_index: int
    explanation: str = ""

    def to_fields(self, *, level: int, user_types: Sequence[str]) -> QuestionFields:
        return build_question_fields(
            question_text=self.question_text,
            options=list(self.options),
            correct_index=self.correct_index,
            level=level,
            usertype=list(user_types),
            explanation=self.explanation,
        )


def _extract_items(data: Any) -> list[Any]:
    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        return list(data["questions"])
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    raise ExternalServiceError("generation API returned no questions", operation="generate_questions")


class QuestionGenerationService:
    def __init__(self, *, llm: LLMPort):
        self.llm = llm

    def generate(self, *, prompt: str, count: int, level: int, user_types: Sequence[str]) -> list[GeneratedQuestion]:
        """Ask the generation API for ``count`` questions. Nothing is persisted here."""
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("prompt must not be empty", operation="generate_questions")
        if not isinstance(count, int) or isinstance(count, bool) or not 1 <= count <= MAX_GENERATED_QUESTIONS:
            raise ValidationError(f"count must be between 1 and {MAX_GENERATED_QUESTIONS}", operation="generate_questions")
        level = clean_level(level)
        types = clean_usertype(user_types)

        system_prompt = _SYSTEM_PROMPT.format(count=count, level=level, user_types=", ".join(types))
        user_prompt = f"Generate {count} quiz questions about: {prompt.strip()}"
        logger.info("Requesting %d generated question(s) from %s", count, getattr(self.llm, "provider_name", "llm"))
        try:
            data = self.llm.generate_structured(
                prompt=user_prompt,
                schema=_generation_schema(count),
                system_prompt=system_prompt,
            )
        except Exception as exc:
            raise ExternalServiceError(str(exc), operation="generate_questions") from exc

        questions: list[GeneratedQuestion] = []
        for idx, item in enumerate(_extract_items(data)):
            if not isinstance(item, dict):
                raise ExternalServiceError(f"question #{idx + 1} is not an object", operation="generate_questions")
            candidate = GeneratedQuestion(
                question_text=item.get("questionText"),  # type: ignore[arg-type]
                options=tuple(item.get("options") or ()),
                correct_index=item.get("correctIndex"),  # type: ignore[arg-type]
                explanation=item.get("explanation") or "",
            )
            try:
                fields = candidate.to_fields(level=level, user_types=types)
            except ValidationError as exc:
                raise ExternalServiceError(
                    f"question #{idx + 1} is malformed: {exc.detail}",
                    operation="generate_questions",
                ) from exc
            questions.append(
                GeneratedQuestion(
                    question_text=fields.question_text,
                    options=fields.options,
                    correct_index=fields.correct_index,
                    explanation=fields.explanation,
                )
            )
        return questions
