"""Query validation and sanitization for the chatbot endpoint."""

import re
from typing import Optional

import structlog

from chatbot.errors import InvalidQueryError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 500

# Prompt-injection keywords and markup
SUSPICIOUS_PATTERNS = re.compile(
    r"(ignore|bypass|system|prompt|instructions|admin|root|password|token|api.?key|<script|javascript:|on\w+\s*=)",
    re.IGNORECASE,
)

# SQL-like fragments; apostrophes are allowed so "I'd like..." still passes
SQL_INJECTION_PATTERNS = re.compile(
    r"(union\s+select|drop\s+table|insert\s+into|delete\s+from|update\s+.*\s+set|--|;\s*$)",
    re.IGNORECASE,
)

_WHITESPACE = re.compile(r"\s+")


def sanitize(query: Optional[str]) -> str:
    """Trim and collapse runs of whitespace to a single space."""
    if query is None:
        return ""
    return _WHITESPACE.sub(" ", query.strip())


def validate_query(query: Optional[str], max_length: int = DEFAULT_MAX_QUERY_LENGTH) -> str:
    """
    Validate a raw user query and return its sanitized form.

    Raises:
        InvalidQueryError: empty, too long, or suspicious content
    """
    if query is None or not query.strip():
        raise InvalidQueryError("Query cannot be empty")

    if len(query) > max_length:
        logger.warning("Query too long", length=len(query), max_length=max_length)
        raise InvalidQueryError(f"Query too long (max {max_length} characters)")

    if SUSPICIOUS_PATTERNS.search(query):
        logger.warning("Suspicious query detected", query_preview=query[:50])
        raise InvalidQueryError("Query contains suspicious keywords")

    if SQL_INJECTION_PATTERNS.search(query):
        logger.warning("Potential SQL injection attempt", query_preview=query[:50])
        raise InvalidQueryError("Query contains invalid characters")

    return sanitize(query)
