from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Literal, Optional

EventType = Literal["practice", "match"]
Variant = Literal["singles", "doubles"]


class EventStatus(str, Enum):
    OPEN = "open"


class UserProfile(BaseModel):
    uid: str
    email: str = ""
    display_name: str = "Player"
    photo_url: Optional[str] = None
    rating: int = 1000


class ToolResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    summary: Optional[str] = None
    error: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(exclude_none=True)


class RatingRange(BaseModel):
    min: int
    max: int


class EventDraft(BaseModel):
    """A validated event, ready to be written to the events collection.

    Dumped with aliases it matches the document layout the mobile app reads.
    """
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True, validate_default=True)

    title: str
    event_type: EventType = Field(alias="eventType")
    host_id: str = Field(alias="hostId")
    location: str
    variant: Variant
    rating_range: RatingRange = Field(alias="ratingRange")
    max_participants: int = Field(alias="maxParticipants")
    participants: List[str]
    matches: Optional[Any] = None
    status: EventStatus = EventStatus.OPEN
    start_at: datetime = Field(alias="startAt")
    end_at: datetime = Field(alias="endAt")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)
