"""
Main CLI for toolbridge using Click.

Commands:
    chat             run one prompt through the tool-calling loop
    serve            run the reference MCP weather endpoint
    tools            list configured servers and their discovered tools
    validate-config  validate a YAML configuration file
"""

import json
import sys
from pathlib import Path

import click

from .config.loader import load_config
from .config.schema import AppConfig
from .core import ChatLoop, GracefulShutdown
from .core.conversation import DEFAULT_SYSTEM_PROMPT
from .llm import UnknownProviderError, default_providers
from .logging import configure_logging
from .mcp import MCPClient, RegistryValidationError, ServerRegistry, ToolBridge
from .server import run_server

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_CONFIG_ERROR = 3
EXIT_INTERRUPTED = 130

_VERSION = "1.0.0"


def _load(config_path: Path | None, cli_args: dict) -> AppConfig:
    """Load the configuration or exit with EXIT_CONFIG_ERROR."""
    try:
        return load_config(config_path=config_path, cli_args=cli_args)
    except FileNotFoundError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)
    except ValueError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _register_servers(registry: ServerRegistry, config: AppConfig) -> None:
    """Register the configured servers or exit with EXIT_CONFIG_ERROR."""
    try:
        registry.load_from_config(config.mcp)
    except RegistryValidationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)


def _config_option(help_text: str = "Path to the YAML configuration file"):
    return click.option(
        "-c",
        "--config",
        type=click.Path(exists=True, path_type=Path),
        help=help_text,
    )


@click.group()
@click.version_option(version=_VERSION, prog_name="toolbridge")
def main() -> None:
    """toolbridge - Bridge MCP tool servers to tool-calling language models.

    Connects to JSON-RPC tool servers, exposes their tools to the model and
    runs a bounded tool-calling loop until the model answers.
    """
    pass


@main.command()
@click.argument("prompt", required=True)
@_config_option()
@click.option("--model", help="Model to use (e.g.: deepseek/deepseek-chat, gpt-4o)")
@click.option("--api-base", help="Model API base URL")
@click.option("--max-iterations", type=int, help="Maximum number of tool-calling turns")
@click.option("--system", "system_prompt", help="System prompt for the conversation")
@click.option("--no-system", is_flag=True, help="Send no system prompt")
@click.option("--json", "json_output", is_flag=True, help="Print the result as JSON")
@click.option("--quiet", is_flag=True, help="Silence the console log")
@click.option("--log-file", type=click.Path(path_type=Path), help="Write JSON logs to this file")
@click.option("-v", "--verbose", count=True, help="More console logging (-v, -vv, -vvv)")
def chat(prompt: str, **kwargs) -> None:  # type: ignore
    """Answer PROMPT, letting the model call the configured MCP tools.

    Examples:

        \b
        $ toolbridge chat "What's the weather in Berlin?" -c config.yaml

        \b
        # Structured JSON output (for pipes)
        $ toolbridge chat "Forecast for Tokyo" --quiet --json | jq .
    """
    config = _load(kwargs.get("config"), kwargs)

    configure_logging(
        config.logging,
        json_output=kwargs.get("json_output", False),
        quiet=kwargs.get("quiet", False),
    )

    shutdown = GracefulShutdown()

    try:
        provider = default_providers().create(config.llm)
    except UnknownProviderError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(EXIT_CONFIG_ERROR)

    system = None if kwargs.get("no_system") else (kwargs.get("system_prompt") or DEFAULT_SYSTEM_PROMPT)

    try:
        with MCPClient(config.mcp) as client:
            registry = ServerRegistry(client)
            _register_servers(registry, config)
            bridge = ToolBridge(registry, client, parallel=config.orchestration.parallel_tools)

            loop = ChatLoop(provider, bridge, config.orchestration, shutdown=shutdown)
            result = loop.run(prompt, system=system)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)

    if kwargs.get("json_output"):
        click.echo(json.dumps(result.to_output_dict(), indent=2, ensure_ascii=False))
    else:
        click.echo(result.content or "")
        if result.warning and not kwargs.get("quiet"):
            click.echo(f"\nWarning: {result.warning}", err=True)
        if not kwargs.get("quiet"):
            click.echo(
                f"\nState: {result.state.value} | "
                f"Iterations: {result.iterations} | "
                f"Tool calls: {len(result.tool_calls)}",
                err=True,
            )

    sys.exit(
        {
            "success": EXIT_SUCCESS,
            "partial": EXIT_PARTIAL,
            "failed": EXIT_FAILED,
        }.get(result.status, EXIT_FAILED)
    )


@main.command()
@_config_option()
@click.option("--host", help="Interface to bind")
@click.option("--port", type=int, help="Port to listen on")
@click.option("--sse", is_flag=True, help="Answer clients that accept it with SSE-framed responses")
@click.option("-v", "--verbose", count=True, help="More console logging (-v, -vv, -vvv)")
def serve(**kwargs) -> None:  # type: ignore
    """Run the reference MCP weather endpoint."""
    config = _load(kwargs.get("config"), kwargs)
    configure_logging(config.logging)

    click.echo(
        f"Serving {config.server.name} on "
        f"http://{config.server.host}:{config.server.port}{config.server.path}",
        err=True,
    )
    run_server(config.server)


@main.command()
@_config_option()
@click.option("-v", "--verbose", count=True, help="More console logging (-v, -vv, -vvv)")
def tools(**kwargs) -> None:  # type: ignore
    """List the configured MCP servers and their tools."""
    config = _load(kwargs.get("config"), kwargs)
    configure_logging(config.logging, quiet=not kwargs.get("verbose"))

    if not config.mcp.servers:
        click.echo("No MCP servers configured.")
        return

    with MCPClient(config.mcp) as client:
        registry = ServerRegistry(client)
        _register_servers(registry, config)

        for server in registry.all_servers():
            session = "session" if server.session_id else "no session"
            click.echo(f"{server.name}  {server.url}  ({session})")
            server_tools = registry.tools_for(server.id)
            if not server_tools:
                click.echo("  (no tools)")
            for tool in server_tools:
                click.echo(f"  - {tool.name}: {tool.description}")


@main.command()
@_config_option("Path to the configuration file to validate")
def validate_config(config: Path | None) -> None:
    """Validate a YAML configuration file."""
    app_config = _load(config, {})
    click.echo("Valid configuration")
    click.echo(f"  Model: {app_config.llm.model}")
    click.echo(f"  Max iterations: {app_config.orchestration.max_iterations}")
    click.echo(f"  MCP servers: {len(app_config.mcp.servers)}")


if __name__ == "__main__":
    main()
