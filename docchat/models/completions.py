"""Wire format of the upstream chat completions endpoint."""

from pydantic import BaseModel, Field

from docchat.models.conversation import Message, Role

DEFAULT_TEMPERATURE = 0.7


class ProviderMessage(BaseModel):
    """A message as the provider sees it: role and content only."""

    role: Role
    content: str

    @classmethod
    def from_message(cls, message: Message) -> "ProviderMessage":
        return cls(role=message.role, content=message.content)


class CompletionRequest(BaseModel):
    """Request body for the completions endpoint."""

    model: str = Field(..., min_length=1)
    messages: list[ProviderMessage] = Field(..., min_length=1)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    stream: bool = False


class CompletionChoice(BaseModel):
    message: ProviderMessage


class CompletionResponse(BaseModel):
    """Buffered response body; only the first choice is used."""

    choices: list[CompletionChoice] = Field(..., min_length=1)

    @property
    def content(self) -> str:
        return self.choices[0].message.content
