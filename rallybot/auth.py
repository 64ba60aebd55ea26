import asyncio
import logging
from typing import Optional

from fastapi import HTTPException
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from rallybot.firebase import USERS_COLLECTION, get_firebase_app, get_firestore
from rallybot.tools.schemas import UserProfile

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "
DEFAULT_DISPLAY_NAME = "Player"
DEFAULT_RATING = 1000


def verify_id_token(id_token: str) -> str:
    """Verify a Firebase ID token and return its uid."""
    decoded = firebase_auth.verify_id_token(id_token, app=get_firebase_app())
    return decoded["uid"]


def load_profile_document(uid: str) -> Optional[dict]:
    doc = get_firestore().collection(USERS_COLLECTION).document(uid).get()
    if not doc.exists:
        return None
    return doc.to_dict() or {}


def profile_from_document(uid: str, data: dict) -> UserProfile:
    display_name = data.get("displayName")
    rating = data.get("rating")
    return UserProfile(
        uid=uid,
        email=data.get("email") or "",
        display_name=display_name if display_name is not None else DEFAULT_DISPLAY_NAME,
        photo_url=data.get("photoURL"),
        rating=rating if rating is not None else DEFAULT_RATING,
    )


async def authenticate_request(authorization: Optional[str]) -> UserProfile:
    """
    Resolve the caller from an Authorization header.
    Raises 401 for a missing, malformed or rejected token and 404 when the
    token is fine but the user never finished onboarding.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Missing or malformed Authorization header")

    id_token = authorization[len(BEARER_PREFIX):]

    try:
        uid = await asyncio.to_thread(verify_id_token, id_token)
    except (ValueError, firebase_exceptions.FirebaseError) as e:
        logger.warning("Rejected ID token: %s", type(e).__name__)
        raise HTTPException(status_code=401, detail="Invalid or expired auth token")

    data = await asyncio.to_thread(load_profile_document, uid)
    if data is None:
        raise HTTPException(status_code=404, detail="User profile not found. Complete onboarding first.")

    return profile_from_document(uid, data)
