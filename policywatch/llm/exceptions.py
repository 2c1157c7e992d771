from typing import Optional


class LLMError(Exception):
    """Base class for model-call failures."""


class LLMRequestError(LLMError):
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after = retry_after


class LLMEmptyResponseError(LLMError):
    """The model answered with no content."""


class LLMDeadlineExceeded(LLMError):
    """The analysis run's wall-clock budget ran out before the call could complete."""
