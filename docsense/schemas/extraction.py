from typing import Any

from pydantic import BaseModel, Field, field_validator


class KeyPair(BaseModel):
    key: str
    value: str
    reason: str

    @field_validator("key", "value", "reason", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        # Models regularly emit numbers for values ("total": 450)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class StructuredPayload(BaseModel):
    """Shape the model is instructed to return. 5-8 key_pairs is advisory only."""

    summary: str = Field(min_length=1)
    key_pairs: list[KeyPair]
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence_is_number(cls, v: Any) -> Any:
        # JSON true and "0.9" would otherwise coerce to a float
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("confidence must be a JSON number")
        return v

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("summary must not be blank")
        return v


class AttemptResponse(BaseModel):
    attempt_number: int
    waited_ms: int
    http_status: int | None
    outcome: str | None


class ProcessResponse(BaseModel):
    success: bool = True
    request_id: str
    text: str
    structured_json: StructuredPayload
    attempts: list[AttemptResponse] = []
    forwarded: bool = False


class ProcessErrorResponse(BaseModel):
    error: str
    kind: str
    detail: str
    request_id: str = ""
    status: int | None = None
    attempts: int = 0
    raw_text: str | None = None
    finish_reason: str | None = None
