"""Error taxonomy for the recommendation pipeline.

Every failure the pipeline can surface derives from ``ChatbotError`` and
carries the HTTP status and ``error_code`` the router maps it to.
Empty results are not errors; they are a response outcome.
"""

from typing import Any, Dict, Optional


class ChatbotError(Exception):
    """Base class for pipeline failures."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    public_message: str = "Sorry, I encountered an error processing your request. Please try again."

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.public_message)
        self.details = details or {}


class InvalidQueryError(ChatbotError):
    status_code = 400
    error_code = "INVALID_QUERY"
    public_message = "Your query could not be accepted."

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        # validation messages are safe to show verbatim
        self.public_message = message


class BudgetExceededError(ChatbotError):
    """Today's spend ceiling has been reached; no reasoning call was made."""

    status_code = 503
    error_code = "BUDGET_EXCEEDED"
    public_message = "Daily query limit reached. Please try again tomorrow."


class ClassificationError(ChatbotError):
    """Intent classification failed.

    ``reached_service`` is True when the reasoning service answered (so the
    call cost money) but the answer could not be parsed into a plan.
    """

    status_code = 502
    error_code = "CLASSIFICATION_FAILED"

    def __init__(self, message: str, reached_service: bool, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.reached_service = reached_service


class RankingError(ChatbotError):
    """Ranking failed. Handled by the configured ranking-failure policy, never surfaced."""

    error_code = "RANKING_FAILED"


class CollaboratorError(ChatbotError):
    """An external collaborator (reasoning, embedding, graph) failed or timed out."""

    status_code = 503
    error_code = "UPSTREAM_UNAVAILABLE"


class ReasoningTransportError(CollaboratorError):
    """The reasoning service could not be reached or returned an error status."""


class ReasoningResponseError(CollaboratorError):
    """The reasoning service answered with something that is not a JSON object."""


class EmbeddingServiceError(CollaboratorError):
    pass


class GraphExecutorError(CollaboratorError):
    pass
