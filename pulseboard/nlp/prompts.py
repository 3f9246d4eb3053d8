from typing import Optional

EXTRACTION_SYSTEM_PROMPT = """You are an AI assistant specialized in analyzing customer communications to extract actionable product feedback. You identify feature requests, bug reports, complaints, praise, and questions from raw customer messages.

Your extraction should be:
- Precise: Only extract genuine product feedback, not general conversation
- Actionable: Summarize feedback in a way that helps product teams act on it
- Contextual: Preserve enough context to understand the customer's situation
- Honest: Set confidence scores accurately based on clarity of the feedback

Output valid JSON only, with no additional text."""

_INSTRUCTIONS = """Instructions:
1. Identify if this message contains actionable product feedback
2. If yes, extract each feedback item with:
   - type: feature_request | bug_report | complaint | praise | question
   - title: A concise, actionable summary (max 80 chars)
   - description: Detailed context including what the user wants and why
   - quote: The most relevant verbatim text from the message
   - confidence: 0.0-1.0 how confident you are this is genuine product feedback
   - sentiment: positive | negative | neutral | mixed
   - urgency: low | normal | high | critical (based on language intensity and business impact)

3. Set has_feedback to false and provide skip_reason if:
   - Message is just casual conversation
   - Message is unclear or ambiguous
   - Message is spam or off-topic
   - Message is just a greeting or thank you

Return JSON in this exact format:
{
  "has_feedback": boolean,
  "feedback_items": [
    {
      "type": "feature_request",
      "title": "Add dark mode support",
      "description": "User wants dark mode to reduce eye strain during night usage",
      "quote": "Would love if you guys added dark mode, I use this app late at night",
      "confidence": 0.95,
      "sentiment": "neutral",
      "urgency": "normal"
    }
  ],
  "skip_reason": "optional - why no feedback was extracted"
}"""


def build_extraction_prompt(message: str, context: Optional[dict] = None) -> str:
    """Build the user prompt for one message.

    ``context`` may carry ``source``, ``channel``, ``user_name`` and
    ``previous_messages``; anything missing is simply left out.
    """
    context = context or {}
    parts = []

    if context.get('source'):
        parts.append(f"Source: {context['source']}")
    if context.get('channel'):
        parts.append(f"Channel: {context['channel']}")
    if context.get('user_name'):
        parts.append(f"From: {context['user_name']}")
    previous = context.get('previous_messages') or []
    if previous:
        parts.append("Previous context:\n" + "\n".join(previous))

    context_block = f"Context:\n{chr(10).join(parts)}\n\n" if parts else ""

    return (
        f"{context_block}Analyze the following customer message and extract any product feedback.\n\n"
        f"Message:\n\"\"\"\n{message}\n\"\"\"\n\n"
        f"{_INSTRUCTIONS}"
    )
