import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from rallybot.tools import execute_tool
from rallybot.tools.create_event import iso_utc
from rallybot.tools.schemas import UserProfile

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 5
FALLBACK_REPLY = "Sorry, I couldn't process that request."


def build_history(
    user: UserProfile,
    history: Optional[List[Dict[str, Any]]] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Context turn and greeting first, then whatever the caller sent."""
    now = now or datetime.now(timezone.utc)
    return [
        {
            "role": "user",
            "parts": [{
                "text": f"[CONTEXT] Current user: {user.display_name} "
                        f"(uid: {user.uid}, rating: {user.rating}). "
                        f"Current time: {iso_utc(now)}."
            }],
        },
        {
            "role": "model",
            "parts": [{
                "text": f"Hello {user.display_name}! I'm RallyBot. "
                        f"How can I help you with badminton events today?"
            }],
        },
        *(history or []),
    ]


def _parts(content: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not content:
        return []
    return [p for p in (content.get("parts") or []) if isinstance(p, dict)]


def first_function_call(content: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Only one call per model turn is acted upon.
    for part in _parts(content):
        call = part.get("functionCall")
        if isinstance(call, dict) and call:
            return call
    return None


def extract_text(content: Optional[Dict[str, Any]]) -> str:
    return "".join(p["text"] for p in _parts(content) if isinstance(p.get("text"), str))


async def run_conversation(
    client,
    user: UserProfile,
    message: str,
    history: Optional[List[Dict[str, Any]]] = None,
    dispatch=execute_tool,
) -> Tuple[str, Optional[str]]:
    """
    Send the user's message and serve the model's function calls until it
    answers in text or MAX_TOOL_ITERATIONS round trips have been made.
    Returns (reply, created_event_id).
    """
    session = client.start_chat(history=build_history(user, history))
    content = await session.send_message(message)
    created_event_id: Optional[str] = None

    iterations = 0
    while iterations < MAX_TOOL_ITERATIONS:
        call = first_function_call(content)
        if call is None:
            break
        iterations += 1

        name = call.get("name")
        result = await dispatch(name, call.get("args") or {}, user)
        if result.success and result.event_id:
            created_event_id = result.event_id

        content = await session.send_message([
            {"functionResponse": {"name": name, "response": result.to_response()}}
        ])
    else:
        if first_function_call(content) is not None:
            logger.warning("Tool iteration cap (%d) reached for %s", MAX_TOOL_ITERATIONS, user.uid)

    reply = extract_text(content) or FALLBACK_REPLY
    return reply, created_event_id
