"""Completion request assembly from the conversation window."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatiq.config import settings
from chatiq.engine.window import correction_key
from chatiq.llm.types import Turn

if TYPE_CHECKING:
    from chatiq.engine.window import WindowEntry
    from chatiq.llm.types import ImageAttachment

logger = logging.getLogger(__name__)

PERSONA_INSTRUCTIONS = """\
SYSTEM GUIDELINES (Enhanced):
1. Maintain context. 2. For complex queries: provide key points with 🔑. 3. Verify facts.
4. Use structured responses. 5. Use analogies. 6. Be conversational. 7. Self-correct.
8. On 'who are you', 'your name', etc., respond only with "I am ChatIQ bot made by ChatIQ AI."
9. Adapt to user's language."""

IMAGE_ONLY_QUERY = "(Analyze the image)"


def role_for(sender: str) -> str:
    """Map a message sender to a completion role."""
    return "user" if sender == "user" else "model"


def _format_corrections(history: list[WindowEntry], notes: dict[str, str]) -> str:
    """List notes attached to messages still in the window."""
    lines = []
    for entry in history:
        if not entry.message_id:
            continue
        note = notes.get(correction_key(entry.message_id))
        if note:
            lines.append(f"- {note}")
    if not lines:
        return ""
    return (
        "PRIOR CORRECTIONS (the user marked these earlier answers as inaccurate; "
        "do not repeat their mistakes):\n" + "\n".join(lines)
    )


def build_turns(
    history: list[WindowEntry],
    text: str,
    image: ImageAttachment | None = None,
    *,
    notes: dict[str, str] | None = None,
    persona: str = PERSONA_INSTRUCTIONS,
    limit: int | None = None,
) -> list[Turn]:
    """Build the ordered turns for one completion request.

    Prior turns are passed through raw. Only the final turn, the user's
    current message, carries the persona instructions and the inline image.

    Args:
        history: Window entries preceding the current turn, oldest first.
        text: The user's message text (may be empty for image-only turns).
        image: Optional image sent with this turn.
        notes: Long-term notes for the session, keyed by note key.
        persona: Instructions prepended to the final turn.
        limit: Max turns including the current one (default: window size).

    Returns:
        Turns ready for a completion backend.
    """
    limit = limit or settings.conversation_window_size
    prior = history[-(limit - 1) :] if limit > 1 else []

    turns = [Turn(role=role_for(entry.sender), text=entry.content) for entry in prior]

    final_text = f"{persona}\n\nUSER QUERY:\n{text or IMAGE_ONLY_QUERY}"
    if notes:
        corrections = _format_corrections(prior, notes)
        if corrections:
            final_text += f"\n\n{corrections}"

    turns.append(Turn(role="user", text=final_text, image=image))
    return turns
