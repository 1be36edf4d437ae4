"""Prompt templates for Gemini calls."""

from autoreply.classifiers.prompts.importance import IMPORTANCE_PROMPT
from autoreply.classifiers.prompts.reply import DEFAULT_REPLY_PROMPT, build_reply_prompt
from autoreply.classifiers.prompts.urgency import URGENCY_PROMPT

__all__ = [
    "DEFAULT_REPLY_PROMPT",
    "IMPORTANCE_PROMPT",
    "URGENCY_PROMPT",
    "build_reply_prompt",
]
