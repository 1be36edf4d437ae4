"""
Abstract base class for pipeline processors.
"""

from abc import ABC, abstractmethod


class BaseProcessor(ABC):
    """One unit of scheduled work (poll, dispatch, reminder sweep, retry)."""

    @abstractmethod
    def process(self) -> dict:
        """
        Run one cycle.

        Returns:
            Processing statistics dict
        """
        pass
