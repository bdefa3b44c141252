"""Tool call seam.

The transport that reaches a tool server is an external collaborator; the
executor only needs something that can call a named tool and return its
result.
"""

import logging
import time
from typing import Any, Dict, Protocol

from testwarden.executor.errors import ToolExecutionError
from testwarden.executor.models import ToolCallSpec, ToolResponse

logger = logging.getLogger(__name__)


class ToolClient(Protocol):
    """Calls tools on a tool server.

    Implementations raise ToolTransientError for retryable transport failures
    and ToolExecutionError when the tool reports an error.
    """

    async def call_tool(self, server: str, tool: str, params: Dict[str, Any]) -> Any: ...


async def invoke_tool(client: ToolClient, call: ToolCallSpec) -> ToolResponse:
    """Call a tool and capture its result or reported error.

    Transient failures propagate so the caller can retry them.
    """
    started = time.perf_counter()
    response = ToolResponse(server=call.server, tool=call.tool, params=dict(call.params))
    try:
        response.result = await client.call_tool(call.server, call.tool, dict(call.params))
    except ToolExecutionError as e:
        response.error = str(e)
        logger.warning(f"Tool {call.qualified_name} returned error: {e}")
    response.elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"Tool {call.qualified_name} finished in {response.elapsed_ms:.0f}ms")
    return response
