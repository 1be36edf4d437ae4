"""
Exceptions raised by the inbound pipeline.

Duplicates and classification failures have no exception type: the first is
a silent no-op and the second always falls back to a neutral classification.
"""


class TransientIOError(RuntimeError):
    """Mail connect/fetch/send failure. The next cycle retries naturally."""


class ParseFailure(ValueError):
    """A fetched message could not be parsed."""


class ConfigurationMissingError(RuntimeError):
    """Account cannot be used (no credentials, undecryptable password, inactive)."""


class DispatchFailureError(RuntimeError):
    """A scheduled reply could not be sent after its delay elapsed."""

    def __init__(self, reply_id: int, reason: str):
        super().__init__(f"Scheduled reply {reply_id} failed: {reason}")
        self.reply_id = reply_id
        self.reason = reason


class ReplyGenerationError(RuntimeError):
    """The AI reply body could not be produced."""
