"""
Urgency / tone analysis prompt for inbound client messages.
"""

URGENCY_PROMPT = """You are analyzing a client email to determine urgency and appropriate response timing.

Conversation History:
{history}

New Message from Client:
"{message}"

Analyze this message and respond ONLY with a JSON object in this exact format:
{{
  "urgencyLevel": <number 1-10>,
  "emotionalTone": "<angry|frustrated|confused|neutral|happy|grateful>",
  "keyTopics": ["topic1", "topic2"],
  "reasoning": "<brief explanation of urgency level>"
}}

Urgency Level Guidelines:
1-2: Casual conversation, no action needed, can wait 4-6 hours
3-4: General inquiry, normal priority, 2-3 hours
5-6: Needs response soon, questions or clarifications, 1-2 hours
7-8: Important but not critical, 30-60 minutes
9-10: URGENT - issues, problems, angry client, 10-20 minutes

Consider:
- Words like "urgent", "ASAP", "immediately", "problem", "issue", "refund" = higher urgency
- Questions = medium-high urgency (5-7)
- Thank you messages = low urgency (2-3)
- Angry tone = very high urgency (8-10)
- Confused/asking for clarification = medium urgency (5-6)

Respond ONLY with the JSON object, no other text."""
