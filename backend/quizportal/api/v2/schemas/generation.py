from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    prompt: str
    count: int = 5
    level: int = 1
    userTypes: list[str] = Field(default_factory=lambda: ["practitioner"])


class GeneratedQuestionModel(BaseModel):
    questionText: str
    options: list[str]
    correctIndex: int
    explanation: str = ""


class GenerateResponse(BaseModel):
    questions: list[GeneratedQuestionModel]
    count: int
    model: str


class GeneratedSubmitRequest(BaseModel):
    questions: list[GeneratedQuestionModel]
    level: int = 1
    userTypes: list[str] = Field(default_factory=lambda: ["practitioner"])
