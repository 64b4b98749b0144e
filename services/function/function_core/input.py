from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Prompt(BaseModel):
    """Function input: a system prompt plus a user prompt template."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_version: Optional[str] = None
    kind: Optional[str] = None
    system_prompt: str = ""
    user_prompt: str = ""
    # Older inputs carry a single free-form prompt instead of userPrompt.
    prompt: str = ""
    metadata: dict = Field(default_factory=dict)

    @model_validator(mode="after")
    def _require_prompt(self) -> "Prompt":
        if not self.user_prompt and not self.prompt:
            raise ValueError("one of userPrompt or prompt is required")
        return self

    @property
    def template(self) -> str:
        return self.user_prompt or self.prompt

    @property
    def instruction(self) -> str:
        return self.prompt or self.user_prompt
