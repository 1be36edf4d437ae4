"""
Abstract base classes for AI-backed message analysis.
"""

from abc import ABC, abstractmethod

from autoreply.core.models import Classification, ConversationMessage


class BaseClassifier(ABC):
    """Abstract urgency classifier interface."""

    @abstractmethod
    def classify(self, body: str, history: list[ConversationMessage]) -> Classification:
        """
        Classify a new message in the context of its conversation.

        Args:
            body: New message text
            history: Up to the last five prior turns, oldest first

        Returns:
            Classification; implementations fall back to a neutral result
            instead of raising.
        """
        pass


class BaseImportanceFilter(ABC):
    """Decides whether a merchant message deserves a human's attention."""

    @abstractmethod
    def is_important(self, subject: str, body: str) -> bool:
        pass
