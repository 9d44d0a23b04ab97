from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class LLMPort(ABC):
    provider_name: str = "llm"
    model_name: str = "llm"

    @abstractmethod
    def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        """Return schema-constrained JSON output (usually an object, sometimes a bare array)."""
