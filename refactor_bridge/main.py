"""
Main entry point for the GitHub Refactor Bridge.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone

from refactor_bridge.config import get_config
from refactor_bridge.errors import AuthenticationError, ConfigurationError
from refactor_bridge.integrations import get_github_client
from refactor_bridge.logging_config import configure_logging, get_logger
from refactor_bridge.orchestrator import RefactorOrchestrator
from refactor_bridge.server import create_server, run_server

logger = get_logger(__name__)


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="refactor-bridge",
        description="GitHub Refactor Bridge - fork, refactor and open pull requests over MCP",
        epilog=(
            "Environment: GITHUB_TOKEN (required), NIA_API_KEY, PORT, CLAUDE_CODE_PATH. "
            "Connect MCP clients to http://<host>:<port>/mcp."
        ),
    )

    mode = parser.add_mutually_exclusive_group()

    mode.add_argument(
        "--stdio",
        action="store_true",
        help="Use the STDIO transport instead of HTTP",
    )

    mode.add_argument(
        "--repo",
        help="Run the workflow once for a repository (owner/name or URL) and exit",
    )

    mode.add_argument(
        "--check-auth",
        action="store_true",
        help="Verify the GitHub token and print the authenticated user",
    )

    parser.add_argument(
        "--base-branch",
        help="Base branch for the pull request with --repo (default: repository default branch)",
    )

    parser.add_argument(
        "--host",
        help="HTTP bind address (default: 0.0.0.0)",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="HTTP server port (default: 8080)",
    )

    parser.add_argument(
        "--config",
        help="Path to config.yaml (default: ./config.yaml)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    if args.base_branch and not args.repo:
        parser.error("--base-branch requires --repo")
    if args.port is not None and args.port <= 0:
        parser.error("--port requires a valid port number")
    return args


async def check_auth(config) -> str:
    """Return the login behind the configured token."""
    client = get_github_client(config)
    try:
        return await client.get_authenticated_login()
    finally:
        client.close()


async def run_once(config, repository: str, base_branch=None):
    """Run the workflow for one repository and return the tool response."""
    orchestrator = RefactorOrchestrator.from_config(config)
    arguments = {"repository_url": repository}
    if base_branch:
        arguments["base_branch"] = base_branch
    try:
        return await orchestrator.handle_tool_call(arguments)
    finally:
        orchestrator.github_client.close()


def print_startup_hints(error: Exception):
    """Point at the usual misconfigurations."""
    message = str(error)
    if "GITHUB_TOKEN" in message:
        print("\nPlease set the GITHUB_TOKEN environment variable:", file=sys.stderr)
        print("export GITHUB_TOKEN=ghp_your_token_here", file=sys.stderr)
    if "claude" in message.lower():
        print("\nPlease ensure Claude CLI is installed and accessible:", file=sys.stderr)
        print('Check that "claude" command is available in your PATH', file=sys.stderr)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = get_config(args.config)
        configure_logging(debug=args.debug or config.debug)
        token_configured = bool(config.github_token)
    except ConfigurationError as e:
        configure_logging(debug=args.debug)
        logger.error("config_load_failed", error=str(e))
        print(f"Error loading config: {e}", file=sys.stderr)
        print_startup_hints(e)
        sys.exit(1)

    logger.info(
        "bridge_starting",
        config_file=config.config_path,
        claude_code_path=config.claude_code_path,
        token_configured=token_configured,
    )

    start_time = datetime.now(timezone.utc)

    try:
        if args.check_auth:
            try:
                login = asyncio.run(check_auth(config))
            except AuthenticationError as e:
                print(f"Error: {e}", file=sys.stderr)
                print_startup_hints(ConfigurationError("GITHUB_TOKEN"))
                sys.exit(1)
            print(f"Authenticated as GitHub user: {login}")
            sys.exit(0)

        if args.repo:
            response = asyncio.run(run_once(config, args.repo, args.base_branch))
            print(response.text)
            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.info("bridge_run_complete", duration=duration, success=not response.is_error)
            sys.exit(1 if response.is_error else 0)

        orchestrator = RefactorOrchestrator.from_config(config)
        server = create_server(
            orchestrator,
            host=args.host or config.server_host,
            port=args.port or config.server_port,
        )
        run_server(server, transport="stdio" if args.stdio else "http")

    except KeyboardInterrupt:
        logger.info("bridge_interrupted")
        print("\nOperation interrupted by user", file=sys.stderr)
        sys.exit(130)

    except ConfigurationError as e:
        logger.error("bridge_configuration_error", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        print_startup_hints(e)
        sys.exit(1)


if __name__ == "__main__":
    main()
