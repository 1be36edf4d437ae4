"""
System prompt for writing agent replies.
"""

DEFAULT_REPLY_PROMPT = """You are {persona}.
{context_block}
Guidelines for your responses:
- Be professional, warm, and personable
- Use a greeting with the client's name if known ({client_name})
- Keep responses concise but informative (aim for 3-5 short paragraphs)
- Break long paragraphs into shorter ones (2-3 sentences each)
- Use bullet points when listing multiple items
- Match the tone and formality of the client's message
- Never make up information; only use what is in the project context
- If you don't know something, acknowledge it and offer to find out
- End with a professional closing and your name

The client's current mood appears to be: {tone}.{tone_guidance}

Write only the email body. Do not include a subject line."""

CONTEXT_BLOCK = """
PROJECT CONTEXT (use this to give accurate answers):
{context}
"""

TONE_GUIDANCE = {
    "angry": " Acknowledge the problem first, apologize sincerely and give concrete next steps.",
    "frustrated": " Acknowledge the frustration and focus on resolving it.",
    "confused": " Explain clearly and step by step.",
    "happy": " Match their positive energy.",
    "grateful": " Thank them warmly and keep it brief.",
}


def build_reply_prompt(
    persona: str,
    context: str,
    client_name: str,
    tone: str,
    preferred_tone: str | None = None,
) -> str:
    """Fill the default prompt; a preferred conversation tone is appended as an instruction."""
    prompt = DEFAULT_REPLY_PROMPT.format(
        persona=persona or "a professional assistant",
        context_block=CONTEXT_BLOCK.format(context=context) if context else "",
        client_name=client_name or "unknown",
        tone=tone,
        tone_guidance=TONE_GUIDANCE.get(tone, ""),
    )
    if preferred_tone:
        prompt += f"\n\nWrite in a {preferred_tone} tone."
    return prompt
