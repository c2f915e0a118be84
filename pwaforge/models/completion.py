"""Chat-completion wire models (OpenRouter-compatible)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: str | None = ""


class CompletionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    messages: list[ChatMessage]


class CompletionChoice(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    message: ChatMessage


class CompletionResponse(BaseModel):
    """Only ``choices`` is read; other fields are ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    choices: list[CompletionChoice] = []

    @property
    def first_content(self) -> str | None:
        """Content of the first choice, or None when there are no choices."""
        if not self.choices:
            return None
        return self.choices[0].message.content or ""
