"""Assistant settings with environment variable loading.

Pydantic-based configuration for the conversation engine.
Supports OpenAI and any OpenAI-compatible completions endpoint.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_SUMMARY_PROMPT = (
    "Summarize the key points of the conversation so far for use as context in "
    "the rest of the conversation. Be brief, no more than 200 words."
)
DEFAULT_TRANSLATE_PROMPT = "Translate into English without adding any explanation."


class AssistantSettings(BaseModel):
    """User-editable settings for the assistant.

    Environment variables provide the defaults; values edited by the user are
    persisted in the key-value store and take precedence.

    Attributes:
        api_endpoint: Full URL of the chat completions endpoint.
        api_key: Bearer token for the endpoint.
        default_model: Model used for new conversations and summaries.
        naming_model: Model used to auto-name conversations.
        temperature: Sampling temperature (0.0 = deterministic, 2.0 = creative).
        stream_output: Stream responses instead of waiting for the full reply.
        history_limit: Maximum number of recent messages sent verbatim.
        compression_threshold: Messages longer than this are compressed.
        enable_history_summary: Summarize older history instead of dropping it.
        history_summary_prompt: Instruction used for the summary request.
        auto_name_conversation: Name conversations after three round trips.
        translate_prompt: Instruction sent by the translate action.
        request_timeout: Upstream request timeout in seconds.
        stream_stall_timeout: Seconds without data before a read counts as failed.
    """

    api_endpoint: str = Field(
        default_factory=lambda: os.getenv("LLM_API_ENDPOINT") or DEFAULT_ENDPOINT,
        description="Chat completions endpoint URL",
    )
    api_key: str = Field(
        default_factory=lambda: os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY", "")),
        description="API key for LLM provider",
        validate_default=True,
    )
    default_model: str = Field(
        default_factory=lambda: os.getenv("LLM_MODEL", "gpt-3.5-turbo"),
        description="Model to use for new conversations",
    )
    naming_model: str = Field(
        default_factory=lambda: os.getenv("LLM_NAMING_MODEL", "gpt-3.5-turbo"),
        description="Model to use for conversation naming",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for response generation",
    )
    stream_output: bool = True
    history_limit: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Recent messages attached to each request",
    )
    compression_threshold: int = Field(
        default=2000,
        ge=500,
        description="Character count above which a message is compressed",
    )
    enable_history_summary: bool = False
    history_summary_prompt: str = DEFAULT_SUMMARY_PROMPT
    auto_name_conversation: bool = True
    translate_prompt: str = DEFAULT_TRANSLATE_PROMPT
    request_timeout: float = Field(default=120.0, gt=0)
    stream_stall_timeout: float = Field(default=30.0, gt=0)

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate that API key is provided and non-empty."""
        if not v or not v.strip():
            raise ValueError(
                "API key required. Set LLM_API_KEY or OPENAI_API_KEY in .env"
            )
        return v.strip()


def get_settings() -> AssistantSettings:
    """Create assistant settings from environment.

    Returns:
        Configured AssistantSettings instance.

    Raises:
        ValueError: If no API key is set.
    """
    return AssistantSettings()
