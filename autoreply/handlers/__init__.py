"""Inbound message handlers."""

from .base import BaseHandler
from .registry import register_handler, get_handler, get_all_handlers

# Import handlers to trigger registration via @register_handler decorator
from .assignment import AssignmentHandler
from .merchant import MerchantHandler

__all__ = [
    "AssignmentHandler",
    "BaseHandler",
    "MerchantHandler",
    "get_all_handlers",
    "get_handler",
    "register_handler",
]
