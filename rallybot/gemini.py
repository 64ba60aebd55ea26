import os
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

import httpx
from fastapi import HTTPException
from dotenv import load_dotenv

from rallybot.tools import TOOL_DECLARATIONS

load_dotenv()

logger = logging.getLogger(__name__)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_TIMEOUT = float(os.getenv("GEMINI_TIMEOUT", "60"))

SYSTEM_PROMPT = """
You are RallyBot, the AI assistant for RallyUp, a badminton event finder app.
You help users create and manage badminton events through natural conversation.

CAPABILITIES:
- Create new badminton events (practice sessions or competitive matches)
- Answer questions about RallyUp features

CONTEXT PROVIDED WITH EACH REQUEST:
- The authenticated user's display name, rating, and uid
- The current date/time

EVENT CREATION RULES:
- Events have two types: "practice" (casual, up to 9999 players) and "match" (competitive, fixed headcount)
- Events have two variants: "singles" (1v1) and "doubles" (2v2)
- Competition headcount is automatic: 2 for singles, 4 for doubles
- Rating range is auto-set to the host's rating ±200 (do NOT ask the user for this)
- Location should be specific (venue name, address, or Google Maps link)
- Start time must be in the future; end time must be after start time

CONVERSATION GUIDELINES:
- If the user's message is ambiguous, ask clarifying questions before calling create_event
- Always confirm the event details before creating (show a summary and ask "Should I create this?")
- After creating, share the event summary and event ID
- Be concise and friendly
- If the user asks about something unrelated to RallyUp, politely redirect

REQUIRED FIELDS (you must gather these before creating):
1. event_type (practice or match): ask if unclear
2. variant (singles or doubles): ask if unclear
3. location: always ask if not provided
4. start_at and end_at: always ask if not provided; help parse natural language dates
   like "tomorrow at 6pm" or "next Saturday 2-4pm"

OPTIONAL FIELDS:
- title: auto-generated if not provided
""".strip()

Content = Dict[str, Any]
Part = Dict[str, Any]


class GeminiClient:
    """
    Process-wide handle on the Gemini generateContent endpoint.
    Holds only configuration, so one instance serves every request.
    """

    def __init__(
        self,
        api_key: str,
        model: str = GEMINI_MODEL,
        api_base: str = GEMINI_API_BASE,
        timeout: float = GEMINI_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def url(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def start_chat(self, history: Optional[List[Content]] = None) -> "ChatSession":
        return ChatSession(self, history or [])

    async def generate(self, contents: List[Content]) -> Dict[str, Any]:
        payload = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "tools": [{"functionDeclarations": TOOL_DECLARATIONS}],
        }
        timeout = httpx.Timeout(self.timeout, read=self.timeout, connect=10.0)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
                r = await client.post(self.url, json=payload, headers={"x-goog-api-key": self.api_key})
                r.raise_for_status()
                return r.json()
        except httpx.TimeoutException:
            raise HTTPException(status_code=504, detail=f"Gemini timed out after {int(self.timeout)}s.")
        except httpx.HTTPError as e:
            logger.error("Gemini request failed: %s", e)
            raise HTTPException(status_code=502, detail="Gemini request failed.")


class ChatSession:
    """Keeps the running contents list for one request's conversation."""

    def __init__(self, client: GeminiClient, history: List[Content]):
        self.client = client
        self.history: List[Content] = list(history)

    async def send_message(self, message: Union[str, List[Part]]) -> Optional[Content]:
        """
        Send a user turn (text or function responses) and return the model's
        content, or None when the model produced no candidate.
        """
        parts = [{"text": message}] if isinstance(message, str) else message
        user_turn = {"role": "user", "parts": parts}

        data = await self.client.generate(self.history + [user_turn])
        candidates = data.get("candidates") or []
        content = candidates[0].get("content") if candidates else None
        if not content:
            logger.warning("Gemini returned no content: %s", data.get("promptFeedback"))
            return None

        content.setdefault("role", "model")
        content.setdefault("parts", [])
        self.history.extend([user_turn, content])
        return content


@lru_cache(maxsize=1)
def get_gemini_client(api_key: str) -> GeminiClient:
    return GeminiClient(api_key)
