"""Exception taxonomy for the conversation engine."""


class EngineError(Exception):
    """Base class for conversation engine errors."""

    pass


class ProviderHTTPError(EngineError):
    """Raised when the provider answers with a non-2xx status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"Provider request failed ({status_code}): {detail}")
        self.status_code = status_code
        self.detail = detail


class ProviderResponseError(EngineError):
    """Raised when a buffered response carries no assistant message."""

    pass


class StreamReadError(EngineError):
    """Raised when reading the next stream chunk fails or stalls."""

    pass


class TurnCancelled(EngineError):
    """Raised at a suspension point once the turn's token has fired."""

    pass


class SummarizationError(EngineError):
    """Raised when the history summary request fails."""

    pass
