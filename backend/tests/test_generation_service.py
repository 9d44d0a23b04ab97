import pytest

from quizportal.application.generation import QuestionGenerationService
from quizportal.domain.errors import ExternalServiceError, ValidationError
from quizportal.infra.llm.gemini import parse_json_text
from quizportal.infra.llm.mock import MockLLM
from quizportal.infra.ports.llm import LLMPort


class _FixedLLM(LLMPort):
    provider_name = "fixed"
    model_name = "fixed-1"

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    def generate_structured(self, *, prompt, schema, system_prompt=None, model=None):
        self.calls.append({"prompt": prompt, "schema": schema, "system_prompt": system_prompt})
        if self.error is not None:
            raise self.error
        return self.payload


def test_mock_llm_output_is_schema_shaped():
    service = QuestionGenerationService(llm=MockLLM())
    questions = service.generate(prompt="the heart", count=3, level=2, user_types=["patient"])
    assert len(questions) == 3
    assert all(len(item.options) == 4 for item in questions)
    assert all(item.correct_index == 0 for item in questions)


def test_prompt_carries_level_and_user_types():
    llm = _FixedLLM(payload={"questions": []})
    QuestionGenerationService(llm=llm).generate(prompt="lungs", count=2, level=3, user_types=["youth", "patient"])
    call = llm.calls[0]
    assert "lungs" in call["prompt"]
    assert "level 3" in call["system_prompt"]
    assert "youth, patient" in call["system_prompt"]
    assert call["schema"]["properties"]["questions"]["minItems"] == 2


def test_bare_list_and_single_object_accepted():
    item = {"questionText": "Q", "options": ["a", "b", "c", "d"], "correctIndex": 2, "explanation": "x"}
    as_list = QuestionGenerationService(llm=_FixedLLM(payload=[item])).generate(prompt="p", count=1, level=1, user_types=["youth"])
    as_object = QuestionGenerationService(llm=_FixedLLM(payload=item)).generate(prompt="p", count=1, level=1, user_types=["youth"])
    assert as_list == as_object
    assert as_list[0].correct_index == 2


@pytest.mark.parametrize("kwargs", [{"prompt": " "}, {"count": 0}, {"count": 51}, {"level": 9}, {"user_types": []}])
def test_input_validation(kwargs):
    params = {"prompt": "p", "count": 1, "level": 1, "user_types": ["youth"]}
    params.update(kwargs)
    with pytest.raises(ValidationError):
        QuestionGenerationService(llm=_FixedLLM(payload=[])).generate(**params)


def test_provider_failure_surfaces_as_external_error():
    service = QuestionGenerationService(llm=_FixedLLM(error=RuntimeError("Gemini HTTP 503: overloaded")))
    with pytest.raises(ExternalServiceError, match="overloaded"):
        service.generate(prompt="p", count=1, level=1, user_types=["youth"])


def test_malformed_question_is_reported():
    payload = {"questions": [{"questionText": "Q", "options": ["a", "b"], "correctIndex": 7}]}
    with pytest.raises(ExternalServiceError, match="question #1 is malformed"):
        QuestionGenerationService(llm=_FixedLLM(payload=payload)).generate(prompt="p", count=1, level=1, user_types=["youth"])


def test_parse_json_text_handles_fenced_output():
    assert parse_json_text('{"questions": []}') == {"questions": []}
    assert parse_json_text('```json\n{"questions": [1]}\n```') == {"questions": [1]}
