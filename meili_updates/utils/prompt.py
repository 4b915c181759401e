"""
Meilisearch Update Management System
Copyright (C) 2024 HOMESERVER LLC

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

"""
Operator interaction.

Orchestrators never call input() themselves; they receive a Prompter so the
state machines can run against scripted answers in tests or automation.
None of the prompts has a default that deletes or overwrites data: an empty
answer always means "no" / "cancel".
"""

import sys
from typing import List, Optional, Tuple

class Prompter:
    """Interface for operator decisions."""

    def confirm(self, question: str) -> bool:
        raise NotImplementedError

    def choose(self, question: str, options: List[Tuple[str, str]]) -> Optional[str]:
        """Return the key of the chosen option, or None for no valid choice."""
        raise NotImplementedError

    def ask(self, question: str) -> str:
        raise NotImplementedError

class ConsolePrompter(Prompter):
    """Prompter reading answers from stdin."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def _input(self, prompt: str) -> str:
        try:
            return input(prompt)
        except EOFError:
            # no terminal attached; treat as no answer
            self.stream.write("\n")
            return ""

    def confirm(self, question: str) -> bool:
        answer = self._input(f"{question} (y/N): ").strip()
        return answer[:1] in ("y", "Y")

    def choose(self, question: str, options: List[Tuple[str, str]]) -> Optional[str]:
        self.stream.write(f"{question}\n")
        for key, label in options:
            self.stream.write(f"{key}. {label}\n")
        self.stream.write("\n")
        keys = [key for key, _ in options]
        answer = self._input(f"Choose option ({'/'.join(keys)}): ").strip()
        return answer if answer in keys else None

    def ask(self, question: str) -> str:
        return self._input(f"{question}: ").strip()
