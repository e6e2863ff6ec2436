# mbdist/modules/flags.py
"""
Build flag translation.

Turns a flat 'key=value --opt value' string into the option mapping
Module::Build itself would build from the same command line
(split_like_shell + read_args), and back into an argv for the driver.
"""

from __future__ import annotations

import re
import shlex
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from mbdist.modules.errors import InvalidBuildFlags

# option names as Module::Build matches them: qr/[\w\-]+/
_OPT = r"[\w-]+"
_KEY_VALUE_RE = re.compile(rf"^(?:--)?({_OPT})=(.*)$", re.S)
_LONG_OPT_RE = re.compile(rf"^--({_OPT})$")
_ACTION_RE = re.compile(rf"^({_OPT})$")


def split_like_shell(text: Optional[str]) -> List[str]:
    if not text or not str(text).strip():
        return []
    try:
        return shlex.split(str(text), posix=True)
    except ValueError as e:
        raise InvalidBuildFlags(f"Cannot parse build flags '{text}': {e}", context={"flags": str(text)}) from e


def _read_arg(args: Dict[str, Any], key: str, value: Any) -> None:
    key = key.replace("-", "_")
    if key in args:
        current = args[key]
        if isinstance(current, list):
            current.append(value)
        else:
            args[key] = [current, value]
    else:
        args[key] = value


def read_args(argv: Iterable[str]) -> Tuple[Dict[str, Any], Optional[str]]:
    """Interpret argv like Module::Build::read_args. Returns (args, action)."""
    tokens = list(argv)
    args: Dict[str, Any] = {}
    extra: List[str] = []
    action: Optional[str] = None
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        i += 1
        m = _KEY_VALUE_RE.match(tok)
        if m:
            _read_arg(args, m.group(1), m.group(2))
            continue
        m = _LONG_OPT_RE.match(tok)
        if m:
            if i < len(tokens):
                value = tokens[i]
                i += 1
            else:
                value = "1"
            _read_arg(args, m.group(1), value)
            continue
        if action is None and _ACTION_RE.match(tok):
            action = tok
            continue
        extra.append(tok)
    if extra:
        args["ARGV"] = extra
    return args, action


def translate(flag_string: Optional[str]) -> Dict[str, Any]:
    """'foo=bar baz=qux' -> {'foo': 'bar', 'baz': 'qux'}. Empty input -> {}."""
    argv = split_like_shell(flag_string)
    if not argv:
        return {}
    args, _action = read_args(argv)
    return args


def flags_as_argv(flags: Optional[Mapping[str, Any]]) -> List[str]:
    argv: List[str] = []
    trailing: List[str] = []
    for key, value in (flags or {}).items():
        if key == "ARGV":
            trailing.extend(str(v) for v in value)
            continue
        values = value if isinstance(value, list) else [value]
        for v in values:
            argv.extend([f"--{key}", "1" if v is None else str(v)])
    return argv + trailing
