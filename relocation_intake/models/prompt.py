"""Prompt template configuration record."""

from pydantic import BaseModel, ConfigDict, Field


class PromptTemplate(BaseModel):
    """Named prompt configuration supplied by configuration storage.

    `user_prompt` is Jinja2 source rendered with the accumulated answers;
    `system_prompt` is sent verbatim.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str
    user_prompt: str
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1500, gt=0)
