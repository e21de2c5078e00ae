"""Error taxonomy shared by retrieval, tools, routing, and generation."""

from __future__ import annotations

import json
from enum import Enum

import httpx
import openai
from pydantic import ValidationError


class ErrorCategory(str, Enum):
    CONNECTIVITY = "connectivity"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.AUTH: "I can't reach my language model right now because of a configuration problem.",
    ErrorCategory.RATE_LIMIT: "I'm getting a lot of questions at the moment. Please try again in a little while.",
    ErrorCategory.MALFORMED: "I couldn't process that request. Could you rephrase it?",
    ErrorCategory.CONNECTIVITY: "I'm having trouble connecting right now. Please try again shortly.",
    ErrorCategory.TIMEOUT: "I'm having trouble connecting right now. Please try again shortly.",
    ErrorCategory.NOT_FOUND: "Something I rely on is missing right now. Please try again later.",
    ErrorCategory.UNKNOWN: "Sorry, something went wrong while answering. Please try again.",
}


def _category_for_status(status_code: int) -> ErrorCategory:
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code in (400, 422):
        return ErrorCategory.MALFORMED
    if status_code == 404:
        return ErrorCategory.NOT_FOUND
    if status_code in (408, 504):
        return ErrorCategory.TIMEOUT
    if status_code >= 500:
        return ErrorCategory.CONNECTIVITY
    return ErrorCategory.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Map a backend exception onto an ``ErrorCategory``."""
    if isinstance(exc, GenerationError):
        return exc.category
    # APITimeoutError subclasses APIConnectionError.
    if isinstance(exc, openai.APITimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return ErrorCategory.CONNECTIVITY
    if isinstance(exc, openai.APIStatusError):
        return _category_for_status(exc.status_code)
    if isinstance(exc, httpx.HTTPStatusError):
        return _category_for_status(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorCategory.CONNECTIVITY
    if isinstance(exc, (json.JSONDecodeError, ValidationError)):
        return ErrorCategory.MALFORMED
    if isinstance(exc, LookupError):
        return ErrorCategory.NOT_FOUND
    return ErrorCategory.UNKNOWN


class GenerationError(Exception):
    """Language-model call failed; carries a category and a user-safe message."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, detail: str, *, category: ErrorCategory | None = None) -> None:
        super().__init__(detail)
        if category is not None:
            self.category = category

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.category]

    @classmethod
    def from_exception(cls, exc: BaseException) -> "GenerationError":
        if isinstance(exc, GenerationError):
            return exc
        category = classify_exception(exc)
        error_type = _ERROR_TYPES.get(category, GenerationError)
        detail = f"{type(exc).__name__}: {exc}"
        if error_type is GenerationError:
            return GenerationError(detail, category=category)
        return error_type(detail, category=category)


class AuthError(GenerationError):
    category = ErrorCategory.AUTH


class RateLimitError(GenerationError):
    category = ErrorCategory.RATE_LIMIT


class MalformedRequestError(GenerationError):
    category = ErrorCategory.MALFORMED


class TransportError(GenerationError):
    """Connectivity failure, timeout, or a stream that broke mid-flight."""

    category = ErrorCategory.CONNECTIVITY


_ERROR_TYPES: dict[ErrorCategory, type[GenerationError]] = {
    ErrorCategory.AUTH: AuthError,
    ErrorCategory.RATE_LIMIT: RateLimitError,
    ErrorCategory.MALFORMED: MalformedRequestError,
    ErrorCategory.CONNECTIVITY: TransportError,
    ErrorCategory.TIMEOUT: TransportError,
}
