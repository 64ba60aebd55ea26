import logging
from typing import Any, Awaitable, Callable, Dict

from .create_event import CREATE_EVENT_DECLARATION, create_event
from .schemas import ToolResult, UserProfile

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Dict[str, Any], UserProfile], Awaitable[ToolResult]]

TOOL_REGISTRY: Dict[str, ToolExecutor] = {
    "create_event": create_event,
}

TOOL_DECLARATIONS = [CREATE_EVENT_DECLARATION]


async def execute_tool(name: str, args: Any, user: UserProfile) -> ToolResult:
    """Route a function call from the model to its executor."""
    func = TOOL_REGISTRY.get(name) if isinstance(name, str) else None
    if not func:
        logger.warning("Model requested unknown tool %r", name)
        return ToolResult(success=False, error=f"Unknown tool: {name}")

    if not isinstance(args, dict):
        args = {}
    logger.info("Executing tool %s for %s", name, user.uid)
    return await func(args, user)
