"""
Interactive approval callbacks for terminal use.
"""

import asyncio
import logging
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.text import Text

from .base import PermissionRequest

logger = logging.getLogger(__name__)


def create_cli_permission_callback(console: Optional[Console] = None):
    """
    Create a permission callback that asks on the terminal.

    Args:
        console: The rich console to prompt on (a new one if None)

    Returns:
        Async callback suitable for ``PermissionManager.set_permission_callback``
    """
    console = console or Console()

    async def permission_callback(request: PermissionRequest) -> bool:
        """Prompt the user to grant the missing permissions."""
        try:
            body = Text()
            body.append("Skill ")
            body.append(request.skill_name, style="bold")
            body.append(" is requesting:\n")
            for permission in request.permissions:
                body.append(f"  - {permission}\n", style="cyan")
            if request.reason:
                body.append(f"\nReason: {request.reason}", style="dim")
            console.print(Panel(body, title="Permission Request", border_style="yellow"))

            # Confirm.ask blocks, keep it off the event loop
            return await asyncio.to_thread(
                Confirm.ask, "Grant these permissions?", console=console, default=False
            )
        except Exception as e:
            logger.error(f"Error in permission callback: {e}")
            return False

    return permission_callback


def create_cli_tool_ask_callback(console: Optional[Console] = None):
    """
    Create a tool ask callback that asks on the terminal.

    The answer is remembered by the permission manager for the rest of the
    session, so the prompt says so.
    """
    console = console or Console()

    async def tool_ask_callback(tool: str, reason: Optional[str] = None) -> bool:
        try:
            message = Text()
            message.append("Allow tool ")
            message.append(tool, style="bold")
            message.append(" for this session?")
            if reason:
                message.append(f" ({reason})", style="dim")
            console.print(message)

            return await asyncio.to_thread(
                Confirm.ask, "Allow?", console=console, default=False
            )
        except Exception as e:
            logger.error(f"Error in tool ask callback for {tool}: {e}")
            return False

    return tool_ask_callback
