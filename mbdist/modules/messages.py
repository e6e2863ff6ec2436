# mbdist/modules/messages.py
"""
Message sink with a stack.

Everything a phase reports goes through error() or msg(). Entries are logged
and kept on the stack; the stack text becomes the buffer of a test report.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from mbdist.modules.logging import parse_and_log


@dataclass
class Message:
    text: str
    is_error: bool
    ts: float = field(default_factory=time.time)

    def __str__(self) -> str:
        prefix = "[ERROR]" if self.is_error else "[MSG]"
        return f"{prefix} {self.text}"


class MessageStack:
    def __init__(self, module: str = "dist"):
        self.module = module
        self._stack: List[Message] = []

    def error(self, text: str) -> None:
        self._stack.append(Message(text=str(text), is_error=True))
        parse_and_log(self.module, logging.ERROR, str(text))

    def msg(self, text: str, verbose: bool = False) -> None:
        self._stack.append(Message(text=str(text), is_error=False))
        parse_and_log(self.module, logging.INFO if verbose else logging.DEBUG, str(text))

    @property
    def entries(self) -> List[Message]:
        return list(self._stack)

    @property
    def errors(self) -> List[str]:
        return [m.text for m in self._stack if m.is_error]

    def stack_as_string(self) -> str:
        return "\n".join(str(m) for m in self._stack)

    def flush(self) -> List[Message]:
        """Return and clear the stack."""
        out, self._stack = self._stack, []
        return out


# --- process-wide stack shared by nested builds ---
_STACK: Optional[MessageStack] = None

def get_message_stack() -> MessageStack:
    global _STACK
    if _STACK is None:
        _STACK = MessageStack("dist")
    return _STACK
