"""
Rich-based user prompts
"""
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

from ..core.interfaces import PromptProvider
from ..core.logging import get_stderr_console


class RichPromptProvider(PromptProvider):
    """Asks for credentials on the terminal when stored ones are missing"""

    def __init__(self, console: Optional[Console] = None):
        # stderr keeps prompts out of piped stdout
        self.console = get_stderr_console() if console is None else console

    def prompt(self, message: str, default: Optional[str] = None, password: bool = False) -> str:
        """Prompt user for input"""
        if password:
            return Prompt.ask(message, password=True, default=default or "", show_default=False, console=self.console)
        return Prompt.ask(message, default=default, console=self.console)

    def confirm(self, message: str, default: bool = False) -> bool:
        """Prompt user for confirmation"""
        return Confirm.ask(message, default=default, console=self.console)
