"""
Handler registry for routing inbound mail to the workflow for its account kind.
"""

from typing import Type

from autoreply.core.logging import get_logger
from autoreply.core.models import MailboxAccount
from autoreply.handlers.base import BaseHandler

log = get_logger(__name__)

# Global handler registry
_handlers: list[BaseHandler] = []


def register_handler(handler_class: Type[BaseHandler]) -> Type[BaseHandler]:
    """
    Decorator to register a handler class.

    Usage:
        @register_handler
        class AssignmentHandler(BaseHandler):
            ...
    """
    _handlers.append(handler_class())
    log.debug("handler_registered", handler=handler_class.__name__)
    return handler_class


def get_handler(account: MailboxAccount, handlers: list[BaseHandler] | None = None) -> BaseHandler | None:
    """
    Get the handler for an account.

    Args:
        account: Mailbox the message was fetched from
        handlers: Explicit handler list; defaults to the registered handlers

    Returns:
        Handler that owns this account kind, or None
    """
    for handler in _handlers if handlers is None else handlers:
        if handler.can_handle(account):
            return handler
    return None


def get_all_handlers() -> list[BaseHandler]:
    """Get all registered handlers."""
    return _handlers.copy()


def clear_handlers() -> None:
    """Clear all registered handlers (for testing)."""
    _handlers.clear()
