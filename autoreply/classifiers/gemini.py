"""
Gemini AI implementations: urgency classification, merchant importance filter
and reply writing.
"""

import json

from google import genai
from google.genai import types

from autoreply.classifiers.base import BaseClassifier, BaseImportanceFilter
from autoreply.classifiers.prompts import IMPORTANCE_PROMPT, URGENCY_PROMPT, build_reply_prompt
from autoreply.config import settings
from autoreply.core.errors import ConfigurationMissingError, ReplyGenerationError
from autoreply.core.logging import get_logger
from autoreply.core.models import (
    Classification,
    Conversation,
    ConversationMessage,
    InboundMessage,
    MailboxAccount,
    MessageDirection,
)

log = get_logger(__name__)

_client: genai.Client | None = None


def get_client() -> genai.Client:
    """Get or create Gemini client."""
    global _client
    if _client is None:
        if not settings.gemini_api_key:
            raise ConfigurationMissingError("GEMINI_API_KEY is required")
        _client = genai.Client(api_key=settings.gemini_api_key)
    return _client


def _is_rate_limit(error: Exception) -> bool:
    error_str = str(error).lower()
    return any(x in error_str for x in ["rate", "429", "quota"])


class GeminiCompletion:
    """Chat-style completion: system prompt + prior turns + new message -> text."""

    def __init__(self, client: genai.Client | None = None, model: str | None = None):
        self._client = client
        self.model_name = model or settings.gemini_model

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    def complete(
        self,
        system_prompt: str | None,
        prior_turns: list[ConversationMessage],
        new_message: str,
        temperature: float = 0.7,
        max_output_tokens: int | None = None,
    ) -> str:
        contents = [
            {
                "role": "user" if turn.direction == MessageDirection.INBOUND else "model",
                "parts": [{"text": turn.body}],
            }
            for turn in prior_turns
        ]
        contents.append({"role": "user", "parts": [{"text": new_message}]})

        response = self.client.models.generate_content(
            model=self.model_name,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt or None,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            ),
        )
        return (response.text or "").strip()


class UrgencyClassifier(BaseClassifier):
    """Gemini-based urgency and tone analysis."""

    def __init__(self, completion: GeminiCompletion | None = None):
        self.completion = completion or GeminiCompletion()

    def classify(self, body: str, history: list[ConversationMessage]) -> Classification:
        history_text = "\n".join(
            f"{turn.speaker}: {turn.body[:500]}" for turn in history[-settings.history_turns:]
        )
        prompt = URGENCY_PROMPT.format(
            history=history_text or "No previous messages",
            message=body[:3000],
        )

        try:
            text = self.completion.complete(None, [], prompt, temperature=0.3)
        except Exception as e:
            if _is_rate_limit(e):
                log.warning("gemini_rate_limit", error=str(e))
            else:
                log.error("gemini_error", error=str(e))
            return Classification.neutral()

        data = _parse_response(text)
        if data is None:
            return Classification.neutral()

        classification = Classification.from_dict(data)
        log.info(
            "message_classified",
            urgency=classification.urgency_level,
            tone=classification.emotional_tone,
        )
        return classification


class ImportanceFilter(BaseImportanceFilter):
    """IMPORTANT / SKIP decision for payment-gateway mail. Fails open."""

    def __init__(self, completion: GeminiCompletion | None = None):
        self.completion = completion or GeminiCompletion()

    def is_important(self, subject: str, body: str) -> bool:
        prompt = IMPORTANCE_PROMPT.format(subject=subject, body=(body or "")[:1000])
        try:
            answer = self.completion.complete(None, [], prompt, temperature=0.3, max_output_tokens=10)
        except Exception as e:
            log.warning("importance_check_failed", error=str(e))
            return True

        important = answer.strip().strip('".').upper() != "SKIP"
        log.info("importance_checked", subject=subject[:50], important=important)
        return important


class ReplyWriter:
    """Writes the agent's reply to a client message."""

    def __init__(self, completion: GeminiCompletion | None = None):
        self.completion = completion or GeminiCompletion()

    def write_reply(
        self,
        account: MailboxAccount,
        conversation: Conversation,
        history: list[ConversationMessage],
        message: InboundMessage,
        classification: Classification,
    ) -> str:
        """
        Generate the reply body.

        Raises:
            ReplyGenerationError: the AI call failed or returned nothing usable
        """
        system_prompt = account.system_prompt or build_reply_prompt(
            persona=account.persona or account.display_name,
            context=conversation.context,
            client_name=conversation.counterpart_name,
            tone=classification.emotional_tone,
            preferred_tone=conversation.tone,
        )

        try:
            reply = self.completion.complete(system_prompt, history, message.body, temperature=0.7)
        except Exception as e:
            raise ReplyGenerationError(f"Reply generation failed: {e}") from e

        if not reply:
            raise ReplyGenerationError("Reply generation returned empty text")

        log.info("reply_written", conversation_id=conversation.id, length=len(reply))
        return reply


def _parse_response(response_text: str) -> dict | None:
    """Parse the first JSON object out of a Gemini response."""
    text = (response_text or "").strip()

    # Remove markdown code blocks if present
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)

    start = text.find("{")
    if start == -1:
        log.error("gemini_parse_error", error="no json object", response_preview=text[:200])
        return None

    try:
        data, _ = json.JSONDecoder().raw_decode(text[start:])
    except json.JSONDecodeError as e:
        log.error("gemini_parse_error", error=str(e), response_preview=text[:200])
        return None

    return data if isinstance(data, dict) else None
