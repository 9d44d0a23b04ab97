from __future__ import annotations

from typing import Any

from quizportal.infra.ports.llm import LLMPort


def _sample(node: Any, path: str) -> Any:
    if not isinstance(node, dict):
        return None
    kind = node.get("type")
    if kind == "object":
        return {key: _sample(value, f"{path}.{key}") for key, value in (node.get("properties") or {}).items()}
    if kind == "array":
        count = int(node.get("minItems") or 1)
        return [_sample(node.get("items"), f"{path}[{idx}]") for idx in range(count)]
    if kind == "integer":
        return int(node.get("minimum") or 0)
    if kind == "number":
        return 0.0
    if kind == "boolean":
        return False
    if isinstance(node.get("enum"), list) and node["enum"]:
        return node["enum"][0]
    return f"[mock] {path.lstrip('.')}"


class MockLLM(LLMPort):
    """Deterministic schema-shaped output for local runs and tests."""

    provider_name = "mock"
    model_name = "mock-llm-v1"

    def generate_structured(
        self,
        *,
        prompt: str,
        schema: dict[str, Any],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> Any:
        return _sample(schema, "")
