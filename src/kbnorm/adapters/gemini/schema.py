"""Pydantic models describing the Gemini generateContent payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class GeminiBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Part(GeminiBaseModel):
    text: str | None = None


class Content(GeminiBaseModel):
    role: str | None = None
    parts: list[Part] = Field(default_factory=list[Part])


class Candidate(GeminiBaseModel):
    content: Content | None = None
    finish_reason: str | None = Field(default=None, alias="finishReason")


class PromptFeedback(GeminiBaseModel):
    block_reason: str | None = Field(default=None, alias="blockReason")


class GenerateContentResponse(GeminiBaseModel):
    candidates: list[Candidate] = Field(default_factory=list[Candidate])
    prompt_feedback: PromptFeedback | None = Field(default=None, alias="promptFeedback")

    @property
    def block_reason(self) -> str | None:
        if self.prompt_feedback is None:
            return None
        return self.prompt_feedback.block_reason

    @property
    def text(self) -> str | None:
        """Concatenated text parts of the first candidate, if any."""

        if not self.candidates or self.candidates[0].content is None:
            return None
        chunks = [part.text for part in self.candidates[0].content.parts if part.text]
        return "".join(chunks) or None


class ErrorDetail(GeminiBaseModel):
    code: int | None = None
    message: str = ""
    status: str | None = None


class ErrorResponse(GeminiBaseModel):
    error: ErrorDetail


class WireItem(GeminiBaseModel):
    """One object of the JSON array exchanged with the model."""

    index: int = Field(alias="_index", strict=True)
    name: str = Field(strict=True)
    description: str = Field(strict=True)
