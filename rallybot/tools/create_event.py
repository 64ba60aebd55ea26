import logging
from typing import Dict, Any, Optional, Tuple
from datetime import datetime, timezone
from dateutil import parser as dtparse

from rallybot.event_store import StorageFailure, get_event_store
from rallybot.tools.schemas import EventDraft, RatingRange, ToolResult, UserProfile

logger = logging.getLogger(__name__)

EVENT_TYPES = ("practice", "match")
VARIANTS = ("singles", "doubles")
RATING_HALF_WIDTH = 200
PRACTICE_MAX_PARTICIPANTS = 9999
MATCH_MAX_PARTICIPANTS = {"singles": 2, "doubles": 4}

CREATE_EVENT_DECLARATION: Dict[str, Any] = {
    "name": "create_event",
    "description": (
        "Creates a new badminton event (practice session or competition match) "
        "in RallyUp. The authenticated user becomes the host and first participant. "
        "Rating range is auto-calculated from the host's current rating (±200)."
    ),
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "title": {
                "type": "STRING",
                "description": "Event title. If omitted or empty, defaults to "
                               "'Practice' or 'Competition' based on event_type.",
            },
            "event_type": {
                "type": "STRING",
                "description": "Type of event. 'practice' = casual practice (up to 9999 participants). "
                               "'match' = competitive match (fixed headcount: 2 for singles, 4 for doubles).",
            },
            "variant": {
                "type": "STRING",
                "description": "Badminton variant. 'singles' = 1v1. 'doubles' = 2v2.",
            },
            "location": {
                "type": "STRING",
                "description": "Event location. Ideally a Google Maps URL, but a venue name "
                               "or address is also accepted.",
            },
            "start_at": {
                "type": "STRING",
                "description": "Event start time in ISO 8601 format (e.g. '2025-06-15T18:00:00'). "
                               "Must be in the future.",
            },
            "end_at": {
                "type": "STRING",
                "description": "Event end time in ISO 8601 format. Must be after start_at.",
            },
        },
        "required": ["event_type", "variant", "location", "start_at", "end_at"],
    },
}


def _parse_timestamp(value: Any) -> datetime:
    dt = dtparse.isoparse(value)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    # Offsets near datetime.max overflow here rather than after the write.
    return dt.astimezone(timezone.utc)


def iso_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def validate_and_build(
    params: Dict[str, Any],
    user: UserProfile,
    now: Optional[datetime] = None,
) -> Tuple[Optional[EventDraft], Optional[str]]:
    """
    Check proposed event fields against the business rules and derive the
    computed ones. Returns (draft, None) on success or (None, message) for
    the first rule that fails. Checks run in a fixed order so the message
    for a given input is always the same.
    """
    now = now or datetime.now(timezone.utc)

    event_type = params.get("event_type")
    if event_type not in EVENT_TYPES:
        return None, f'Invalid event_type "{event_type}". Must be "practice" or "match".'

    variant = params.get("variant")
    if variant not in VARIANTS:
        return None, f'Invalid variant "{variant}". Must be "singles" or "doubles".'

    location = params.get("location")
    if not isinstance(location, str) or not location.strip():
        return None, "Location is required."
    location = location.strip()

    try:
        start_at = _parse_timestamp(params.get("start_at"))
        end_at = _parse_timestamp(params.get("end_at"))
    except (ValueError, TypeError, OverflowError):
        return None, "Invalid date format. Use ISO 8601."

    if start_at <= now:
        return None, "Start time must be in the future."
    if end_at <= start_at:
        return None, "End time must be after start time."

    is_competition = event_type == "match"
    max_participants = MATCH_MAX_PARTICIPANTS[variant] if is_competition else PRACTICE_MAX_PARTICIPANTS

    raw_title = params.get("title")
    title = raw_title.strip() if isinstance(raw_title, str) else ""
    if not title:
        title = "Competition" if is_competition else "Practice"

    # No clamp: low-rated hosts can get a negative minimum.
    rating_range = RatingRange(min=user.rating - RATING_HALF_WIDTH, max=user.rating + RATING_HALF_WIDTH)

    draft = EventDraft(
        title=title,
        event_type=event_type,
        host_id=user.uid,
        location=location,
        variant=variant,
        rating_range=rating_range,
        max_participants=max_participants,
        participants=[user.uid],
        matches=None,
        start_at=start_at,
        end_at=end_at,
        created_at=now,
        updated_at=now,
    )
    return draft, None


def summarize(draft: EventDraft, event_id: str) -> str:
    return (
        f'Created "{draft.title}" ({draft.event_type}, {draft.variant}) '
        f"at {draft.location}, "
        f"from {iso_utc(draft.start_at)} to {iso_utc(draft.end_at)}. "
        f"Rating range: {draft.rating_range.min}-{draft.rating_range.max}. "
        f"Max participants: {draft.max_participants}. "
        f"Event ID: {event_id}"
    )


async def create_event(params: Dict[str, Any], user: UserProfile) -> ToolResult:
    """
    Validate the model's arguments, store the event and describe it.
    Rule violations and storage errors come back as failed results so the
    model can explain them to the user.
    """
    draft, error = validate_and_build(params, user)
    if error:
        logger.info("create_event rejected for %s: %s", user.uid, error)
        return ToolResult(success=False, error=error)

    try:
        event_id = await get_event_store().create(draft)
    except StorageFailure:
        return ToolResult(success=False, error="Failed to save the event. Please try again.")

    logger.info("Created event %s for host %s", event_id, user.uid)
    return ToolResult(success=True, event_id=event_id, summary=summarize(draft, event_id))
