"""Interactive terminal front end for the MineChat client."""

from typing import Dict, Iterable, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from .models import ChatMessage, Direction


class SlashCommandCompleter(Completer):
    def __init__(self, commands: Dict[str, str]):
        self.commands = commands

    def get_completions(self, document, complete_event) -> Iterable[Completion]:
        text = document.text_before_cursor
        # Only the command word itself is completed
        if not text.startswith("/") or " " in text:
            return

        for cmd, desc in sorted(self.commands.items()):
            if cmd.startswith(text):
                yield Completion(cmd, start_position=-len(text), display_meta=desc)


class ChatConsole:
    def __init__(self, prompt: str = "> ", console: Optional[Console] = None):
        self.console = console or Console(highlight=False)
        self.prompt = prompt
        self.commands: Dict[str, str] = {}
        self._session: Optional[PromptSession] = None

    def register_command(self, name: str, help_text: str):
        """Make a local command available for completion."""
        self.commands[name] = help_text

    def get_completer(self):
        return SlashCommandCompleter(self.commands)

    def live(self):
        """Keep the prompt below incoming output while a session runs."""
        return patch_stdout(raw=True)

    def show_banner(self, address: str):
        self.console.print(Panel(f"MineChat - {escape(address)}", style="bold green"))

    async def read_line(self) -> Optional[str]:
        """Prompt for one line; None on end of input or Ctrl-C."""
        if self._session is None:
            self._session = PromptSession()
        try:
            return await self._session.prompt_async(
                self.prompt, completer=self.get_completer()
            )
        except (EOFError, KeyboardInterrupt):
            return None

    def show_message(self, message: ChatMessage) -> None:
        if message.direction is Direction.INBOUND and message.sender:
            self.console.print(
                f"[bold cyan]\\[{escape(message.sender)}][/bold cyan] {escape(message.text)}"
            )
        else:
            self.console.print(escape(message.text))

    def show_notice(self, text: str, style: str = "yellow") -> None:
        self.console.print(escape(text), style=style)

    def show_error(self, text: str) -> None:
        self.console.print(f"Error: {escape(text)}", style="bold red")
