"""
Error types and safe error reporting.

Store errors wrap whatever the persistence backend raised so the services can
apply an explicit policy instead of catching arbitrary exceptions. Routes use
sanitize_error() to log the real cause and return a generic message, so
database/library details never reach API responses.
"""

from __future__ import annotations
import logging
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A persistence backend could not complete an operation."""


class ModerationStoreError(StoreError):
    """Moderation rules / flagged content storage failed."""


class RateLimitStoreError(StoreError):
    """Rate-limit counter storage failed."""


GENERIC_MESSAGES = {
    "database": "A database error occurred. Please try again later.",
    "validation": "The request contained invalid data.",
    "auth": "Authentication failed. Please sign in again.",
    "rate_limit": "Too many requests. Please try again later.",
    "moderation": "Content could not be checked right now. Please try again later.",
    "unknown": "Something went wrong. Please try again later.",
}


def _logger():
    return current_app.logger if has_app_context() else logger


def sanitize_error(error: Exception, category: str = "unknown", context: str = "") -> str:
    """
    Log the full error and return a user-safe message.

    Args:
        error: The exception that was raised
        category: Key into GENERIC_MESSAGES
        context: Short description of what was being attempted

    Returns:
        Generic message for the category
    """
    prefix = f"{context}: " if context else ""
    _logger().error(f"{prefix}{type(error).__name__}: {error}")
    return GENERIC_MESSAGES.get(category, GENERIC_MESSAGES["unknown"])
