"""
Inbound mail auto-reply service.

- Polls agent and merchant mailboxes over IMAP
- Deduplicates every inbound message before it is handled
- Classifies urgency with Gemini and writes the reply
- Sends replies at a human-plausible time (durable scheduled replies)
- Forwards merchant mail and tracks reply reminders and follow-ups
"""

__version__ = "1.0.0"
