import os
import asyncio
import logging
import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv
from typing import Any, Dict, List, Optional

from rallybot import gemini
from rallybot.auth import authenticate_request
from rallybot.conversation import run_conversation

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CHAT_TIMEOUT_SECONDS = float(os.getenv("CHAT_TIMEOUT_SECONDS", "60"))

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


class ChatIn(BaseModel):
    message: str
    # Prior turns are passed to the model as they are.
    history: Optional[List[Dict[str, Any]]] = None


class ChatOut(BaseModel):
    reply: str
    created_event_id: Optional[str] = None


app = FastAPI(title="RallyBot")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 405:
        allowed = (exc.headers or {}).get("Allow", "POST")
        message = f"Method not allowed. Use {allowed}."
    return JSONResponse(status_code=exc.status_code, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def read_chat_body(request: Request) -> ChatIn:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON.")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise HTTPException(status_code=400, detail="Message is required.")

    try:
        return ChatIn.model_validate(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="History must be a list of turns.")


@app.get("/health")
async def health():
    api_key = os.getenv("GEMINI_API_KEY")
    reachable = False
    if api_key:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(5.0, connect=3.0)) as client:
                rr = await client.get(
                    f"{gemini.GEMINI_API_BASE}/models/{gemini.GEMINI_MODEL}",
                    headers={"x-goog-api-key": api_key},
                )
                rr.raise_for_status()
                reachable = True
        except httpx.HTTPError:
            pass
    return {"ok": True, "model": gemini.GEMINI_MODEL, "gemini_reachable": reachable}


@app.post("/chat", response_model=ChatOut)
async def chat(request: Request):
    user = await authenticate_request(request.headers.get("authorization"))
    body = await read_chat_body(request)

    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise HTTPException(status_code=500, detail="Gemini API key not configured.")

    client = gemini.get_gemini_client(api_key)
    try:
        reply, created_event_id = await asyncio.wait_for(
            run_conversation(client, user, body.message, body.history),
            timeout=CHAT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("Chat for %s exceeded %ss", user.uid, CHAT_TIMEOUT_SECONDS)
        raise HTTPException(status_code=504, detail="Request timed out.")

    return ChatOut(reply=reply, created_event_id=created_event_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rallybot.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
