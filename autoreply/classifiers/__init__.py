"""
Message classifiers module.

All AI calls go through Gemini (google-genai).
"""

from autoreply.classifiers.base import BaseClassifier, BaseImportanceFilter
from autoreply.classifiers.gemini import (
    GeminiCompletion,
    ImportanceFilter,
    ReplyWriter,
    UrgencyClassifier,
)


def get_classifier() -> UrgencyClassifier:
    """Get the urgency classifier for assignment mail."""
    return UrgencyClassifier()


def get_importance_filter() -> ImportanceFilter:
    """Get the IMPORTANT/SKIP filter for merchant mail."""
    return ImportanceFilter()


def get_reply_writer() -> ReplyWriter:
    return ReplyWriter()


__all__ = [
    "BaseClassifier",
    "BaseImportanceFilter",
    "GeminiCompletion",
    "ImportanceFilter",
    "ReplyWriter",
    "UrgencyClassifier",
    "get_classifier",
    "get_importance_filter",
    "get_reply_writer",
]
