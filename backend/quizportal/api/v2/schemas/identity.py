from pydantic import BaseModel, Field


class MeResponse(BaseModel):
    uid: str
    email: str | None = None
    roles: dict[str, bool] = Field(default_factory=dict)
    isAdmin: bool = False
    isOperational: bool = False
    canAccessPortal: bool = False
