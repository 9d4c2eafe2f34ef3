"""CLI entry point for the RCON client."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from prompt_toolkit import prompt

from asyncrcon.client import RconClient
from asyncrcon.config import (
    DEFAULT_PORT,
    AppConfig,
    RconConfig,
    ServerConfig,
    load_config,
)
from asyncrcon.errors import (
    AuthenticationFailed,
    ConfigurationError,
    ConnectionRefused,
    RconError,
)
from asyncrcon.repl import run_repl

# Exit codes
EXIT_OK = 0
EXIT_RCON_ERROR = 1
EXIT_USAGE_ERROR = 2

PASSWORD_ENV = "RCON_PASSWORD"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="asyncrcon",
        description="Source RCON client",
    )
    parser.add_argument(
        "server",
        nargs="?",
        help="Server name (from config) or host:port (e.g., 127.0.0.1:25575)",
    )
    parser.add_argument(
        "-p",
        "--password",
        help=f"RCON password (default: ${PASSWORD_ENV}, then the server profile)",
    )
    parser.add_argument(
        "-c",
        "--command",
        help="Execute a single command and exit (non-interactive mode)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Request timeout in milliseconds (default: from profile, else 5000)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log protocol traffic to stderr",
    )
    return parser


def select_server(config: AppConfig) -> tuple[str, ServerConfig]:
    """Prompt the user to select from configured servers.

    Returns (key, ServerConfig).
    """
    servers = list(config.servers.items())
    if not servers:
        print(
            "No server given and none configured. Pass host[:port] as an argument.",
            file=sys.stderr,
        )
        sys.exit(EXIT_USAGE_ERROR)

    print("Available servers:")
    for i, (_key, srv) in enumerate(servers, 1):
        print(f"  {i}. {srv.name} ({srv.host}:{srv.port})")

    while True:
        try:
            choice = input(f"\nSelect server [1-{len(servers)}]: ").strip()
            idx = int(choice) - 1
            if 0 <= idx < len(servers):
                return servers[idx]
        except ValueError:
            pass
        except EOFError:
            sys.exit(EXIT_USAGE_ERROR)
        print(f"Please enter a number between 1 and {len(servers)}")


def resolve_server(
    server_arg: str | None, config: AppConfig
) -> tuple[str, ServerConfig]:
    """Resolve the target server from CLI arg or interactive selection.

    Returns (display_name, ServerConfig).
    """
    if server_arg is not None:
        if server_arg in config.servers:
            return server_arg, config.servers[server_arg]

        if ":" in server_arg:
            host, port_str = server_arg.rsplit(":", 1)
            try:
                port = int(port_str)
                return server_arg, ServerConfig(name=server_arg, host=host, port=port)
            except ValueError:
                pass

        return server_arg, ServerConfig(
            name=server_arg, host=server_arg, port=DEFAULT_PORT
        )

    if config.default_server and config.default_server in config.servers:
        key = config.default_server
        return key, config.servers[key]

    return select_server(config)


def resolve_password(password_arg: str | None, server: ServerConfig) -> str:
    """Resolve the password from the CLI flag, environment, profile, or a prompt."""
    if password_arg is not None:
        return password_arg

    env_password = os.environ.get(PASSWORD_ENV)
    if env_password:
        return env_password

    if server.password:
        return server.password

    try:
        return prompt(f"Password for {server.host}:{server.port}: ", is_password=True)
    except (EOFError, KeyboardInterrupt):
        sys.exit(EXIT_USAGE_ERROR)


async def run(config: RconConfig, display_name: str, command: str | None) -> int:
    """Connect, then run one command or the interactive console."""
    client = RconClient(config)
    try:
        await client.connect()
    except ConnectionRefused as e:
        print(f"Connection failed: {e}", file=sys.stderr)
        return EXIT_RCON_ERROR
    except AuthenticationFailed as e:
        print(f"Authentication failed: {e}", file=sys.stderr)
        return EXIT_RCON_ERROR

    try:
        if command:
            response = await client.send(command)
            if response:
                print(response)
            return EXIT_OK

        print(f"Connected to {display_name} ({config.host}:{config.port})")
        print("Ctrl+D or 'exit' to quit, 'reconnect' to open a new connection.\n")
        await run_repl(client)
    except RconError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RCON_ERROR
    finally:
        await client.disconnect()
    return EXIT_OK


def main() -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        app_config = load_config()
    except (OSError, ValueError, KeyError) as e:
        print(f"Error: cannot read config file: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE_ERROR)

    display_name, server = resolve_server(args.server, app_config)
    password = resolve_password(args.password, server)

    try:
        config = RconConfig(
            host=server.host,
            port=server.port,
            password=password,
            timeout=args.timeout or server.timeout,
        )
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_USAGE_ERROR)

    sys.exit(asyncio.run(run(config, display_name, args.command)))
