"""Interactive console using prompt_toolkit."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory

from asyncrcon.config import HISTORY_FILE, ensure_config_dir
from asyncrcon.errors import (
    DisconnectedBeforeResponse,
    NotConnected,
    RconError,
    RequestTimedOut,
)

if TYPE_CHECKING:
    from asyncrcon.client import RconClient

log = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit")
RECONNECT_COMMAND = "reconnect"


async def run_repl(client: RconClient) -> None:
    """Read commands from the terminal until the user quits.

    Args:
        client: An already-connected and authorized RconClient.
    """
    ensure_config_dir()
    session: PromptSession[str] = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
    )

    while True:
        try:
            text = await session.prompt_async(HTML("<ansigreen>rcon</ansigreen>> "))
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye.")
            break

        text = text.strip()
        if not text:
            continue

        if text in EXIT_COMMANDS:
            print("Goodbye.")
            break

        if text == RECONNECT_COMMAND:
            await reconnect(client)
            continue

        await execute_command(client, text)


async def execute_command(client: RconClient, text: str) -> bool:
    """Send one command and print its response.

    Returns False if the command failed. Connection problems are reported
    but never repaired here; the user decides whether to reconnect.
    """
    try:
        response = await client.send(text)
    except RequestTimedOut:
        print("Request timed out.", file=sys.stderr)
        return False
    except (DisconnectedBeforeResponse, NotConnected):
        print(
            "Connection lost. Use 'reconnect' to try again, or 'exit' to quit.",
            file=sys.stderr,
        )
        return False
    except RconError as e:
        log.debug("Command %r failed", text, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return False

    if response:
        print(response)
    return True


async def reconnect(client: RconClient) -> bool:
    """Drop the current connection and open a new one.

    Returns True if the new connection is authorized.
    """
    await client.disconnect()
    try:
        await client.connect()
    except RconError as e:
        print(f"Reconnect failed: {e}", file=sys.stderr)
        return False
    print("Reconnected successfully.")
    return True
