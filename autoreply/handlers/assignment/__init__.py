"""Assignment (client to agent) handler."""

from .handler import AssignmentHandler

__all__ = ["AssignmentHandler"]
