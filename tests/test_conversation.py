import asyncio
from datetime import datetime, timezone

from rallybot.conversation import (
    FALLBACK_REPLY,
    MAX_TOOL_ITERATIONS,
    build_history,
    run_conversation,
)
from rallybot.tools.schemas import ToolResult
from tests.fakes import FakeClient, call_turn, text_turn


class RecordingDispatch:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def __call__(self, name, args, user):
        self.calls.append((name, args))
        if self.results:
            return self.results.pop(0)
        return ToolResult(success=False, error="nothing scripted")


def run(client, user, message="hi", history=None, dispatch=None):
    dispatch = dispatch or RecordingDispatch()
    return asyncio.run(run_conversation(client, user, message, history, dispatch=dispatch))


def test_history_starts_with_context_and_greeting(user):
    prior = [{"role": "user", "parts": [{"text": "earlier"}]}]
    history = build_history(user, prior, now=datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc))

    assert history[0] == {"role": "user", "parts": [{
        "text": "[CONTEXT] Current user: Dana (uid: host-1, rating: 1200). "
                "Current time: 2026-05-01T09:30:00.000Z."
    }]}
    assert history[1]["role"] == "model"
    assert history[1]["parts"][0]["text"] == (
        "Hello Dana! I'm RallyBot. How can I help you with badminton events today?"
    )
    assert history[2:] == prior


def test_text_reply_without_tools(user):
    client = FakeClient(text_turn("Sure, ", "what time?"))
    dispatch = RecordingDispatch()
    reply, created = run(client, user, "make an event", dispatch=dispatch)

    assert reply == "Sure, what time?"
    assert created is None
    assert dispatch.calls == []
    assert client.session.sent == ["make an event"]


def test_function_call_round_trip(user):
    client = FakeClient(call_turn(event_type="practice"), text_turn("Created it!"))
    dispatch = RecordingDispatch(ToolResult(success=True, event_id="evt9", summary="Created"))
    reply, created = run(client, user, dispatch=dispatch)

    assert reply == "Created it!"
    assert created == "evt9"
    assert dispatch.calls == [("create_event", {"event_type": "practice"})]
    assert client.session.sent[1] == [{
        "functionResponse": {
            "name": "create_event",
            "response": {"success": True, "event_id": "evt9", "summary": "Created"},
        }
    }]


def test_failed_tool_result_is_fed_back_and_no_id_recorded(user):
    client = FakeClient(call_turn(), text_turn("That time has passed."))
    dispatch = RecordingDispatch(ToolResult(success=False, error="Start time must be in the future."))
    reply, created = run(client, user, dispatch=dispatch)

    assert reply == "That time has passed."
    assert created is None
    response = client.session.sent[1][0]["functionResponse"]["response"]
    assert response == {"success": False, "error": "Start time must be in the future."}


def test_last_created_id_wins(user):
    client = FakeClient(call_turn(), call_turn(), call_turn(), text_turn("ok"))
    dispatch = RecordingDispatch(
        ToolResult(success=True, event_id="a"),
        ToolResult(success=True, event_id="b"),
        ToolResult(success=False, error="nope"),
    )
    _, created = run(client, user, dispatch=dispatch)
    assert created == "b"


def test_only_first_function_call_in_a_turn_is_run(user):
    turn = {"role": "model", "parts": [
        {"text": "Let me do both."},
        {"functionCall": {"name": "create_event", "args": {"title": "first"}}},
        {"functionCall": {"name": "create_event", "args": {"title": "second"}}},
    ]}
    client = FakeClient(turn, text_turn("done"))
    dispatch = RecordingDispatch(ToolResult(success=True, event_id="x"))
    run(client, user, dispatch=dispatch)
    assert dispatch.calls == [("create_event", {"title": "first"})]


def test_loop_is_capped(user):
    client = FakeClient(repeat=call_turn())
    dispatch = RecordingDispatch(*[ToolResult(success=True, event_id=f"e{i}") for i in range(10)])
    reply, created = run(client, user, dispatch=dispatch)

    assert len(dispatch.calls) == MAX_TOOL_ITERATIONS
    assert len(client.session.sent) == MAX_TOOL_ITERATIONS + 1
    assert reply == FALLBACK_REPLY
    assert created == f"e{MAX_TOOL_ITERATIONS - 1}"


def test_capped_turn_still_returns_its_text(user):
    turn = {"role": "model", "parts": [{"text": "Working on it"}, {"functionCall": {"name": "create_event"}}]}
    client = FakeClient(repeat=turn)
    reply, _ = run(client, user)
    assert reply == "Working on it"


def test_missing_args_become_empty_dict(user):
    client = FakeClient({"role": "model", "parts": [{"functionCall": {"name": "create_event"}}]}, text_turn("?"))
    dispatch = RecordingDispatch()
    run(client, user, dispatch=dispatch)
    assert dispatch.calls == [("create_event", {})]


def test_no_content_falls_back(user):
    client = FakeClient(None)
    reply, created = run(client, user)
    assert reply == FALLBACK_REPLY
    assert created is None


def test_caller_history_is_passed_verbatim(user):
    prior = [{"role": "model", "parts": [{"text": "What location?"}]}]
    client = FakeClient(text_turn("ok"))
    run(client, user, history=prior)
    assert client.session.history[-1] is prior[0]


def test_malformed_function_call_parts_are_ignored(user):
    turn = {"role": "model", "parts": [
        {"functionCall": "create_event"},
        {"functionCall": ["create_event"]},
        {"functionCall": {}},
        {"text": "Which venue?"},
    ]}
    client = FakeClient(turn)
    dispatch = RecordingDispatch()
    reply, created = run(client, user, dispatch=dispatch)

    assert reply == "Which venue?"
    assert created is None
    assert dispatch.calls == []


def test_non_dict_parts_are_skipped(user):
    turn = {"role": "model", "parts": ["raw", None, {"functionCall": {"name": "create_event", "args": {}}}]}
    client = FakeClient(turn, text_turn("ok"))
    dispatch = RecordingDispatch()
    run(client, user, dispatch=dispatch)
    assert dispatch.calls == [("create_event", {})]
