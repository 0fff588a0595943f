"""Local slash commands handled by the client instead of being sent as chat."""

from typing import Any, Awaitable, Callable, Dict, Optional

from .models import RelayExit

CommandHandler = Callable[[str], Awaitable[Optional[RelayExit]]]


class CommandRegistry:
    def __init__(self, output):
        self.output = output
        self.commands: Dict[str, dict[str, Any]] = {}
        self._register_builtin_commands()

    def _register_builtin_commands(self):
        """Register built-in commands."""
        self.register_command(
            "/help", self.help_command, "Display the available client commands"
        )
        self.register_command("/quit", self.quit_command, "Leave the chat")
        self.register_command("/exit", self.quit_command, "Leave the chat")

    def register_command(self, name: str, handler: CommandHandler, help_text: str):
        """Register a new command."""
        self.commands[name] = {"handler": handler, "help": help_text}

    def lookup(self, line: str) -> Optional[CommandHandler]:
        """Return the handler for a command line, or None if it is plain chat."""
        if not line.startswith("/"):
            return None
        cmd_name = line.split()[0]
        cmd_info = self.commands.get(cmd_name)
        return cmd_info["handler"] if cmd_info else None

    async def help_command(self, _: str) -> None:
        """Display help information."""
        self.output.show_notice("Available commands:")
        for cmd_name, cmd_info in sorted(self.commands.items()):
            self.output.show_notice(f"  {cmd_name}: {cmd_info['help']}")

    async def quit_command(self, _: str) -> RelayExit:
        """Leave the chat session."""
        return RelayExit.QUIT
