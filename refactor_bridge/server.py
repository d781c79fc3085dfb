"""
MCP server exposing the ``github_full_workflow`` tool.
"""

from typing import Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import CallToolResult, TextContent
from pydantic import Field
from starlette.requests import Request
from starlette.responses import JSONResponse
from typing_extensions import Annotated

from refactor_bridge import __version__
from refactor_bridge.logging_config import get_logger
from refactor_bridge.orchestrator import RefactorOrchestrator

logger = get_logger(__name__)

SERVER_NAME = "github-refactoring"
TOOL_NAME = "github_full_workflow"
TOOL_DESCRIPTION = (
    "Clone a GitHub repository, apply automated refactoring, and create a pull request "
    "with the improvements. This performs the complete workflow: "
    "fork → clone → refactor → commit → push → create PR."
)

TRANSPORTS = {
    "stdio": "stdio",
    "http": "streamable-http",
}


def create_server(
    orchestrator: RefactorOrchestrator,
    host: str = "0.0.0.0",
    port: int = 8080,
) -> FastMCP:
    """
    Build the MCP server.

    Args:
        orchestrator: Workflow runner shared by all tool calls
        host: Bind address for the HTTP transport
        port: Port for the HTTP transport

    Returns:
        Configured FastMCP server
    """
    server = FastMCP(SERVER_NAME, host=host, port=port)

    @server.tool(name=TOOL_NAME, description=TOOL_DESCRIPTION)
    async def github_full_workflow(
        repository_url: Annotated[str, Field(
            description="The GitHub repository URL (e.g., https://github.com/owner/repo or owner/repo)",
        )],
        base_branch: Annotated[Optional[str], Field(
            description="The base branch to create the PR against (defaults to repository's default branch)",
        )] = None,
    ) -> CallToolResult:
        logger.info("tool_called", tool=TOOL_NAME, repository=repository_url, base_branch=base_branch)
        arguments = {"repository_url": repository_url}
        if base_branch:
            arguments["base_branch"] = base_branch

        response = await orchestrator.handle_tool_call(arguments)
        # Returned as is, so the client sees the text unchanged with isError set
        return CallToolResult(
            content=[TextContent(type="text", text=response.text)],
            isError=response.is_error,
        )

    @server.custom_route("/health", methods=["GET"])
    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "server": SERVER_NAME,
            "version": __version__,
            "tools": [TOOL_NAME],
        })

    return server


def run_server(server: FastMCP, transport: str = "http") -> None:
    """Serve until interrupted."""
    logger.info("server_starting", name=SERVER_NAME, transport=transport)
    server.run(transport=TRANSPORTS[transport])
