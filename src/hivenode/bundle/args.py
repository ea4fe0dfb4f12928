# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/bundle/args.py

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, List

# Placed between an option and a positional argument to stop to_bash()
# from pairing them on one line.
ARG_BREAK = "-!arg-break!-"


def _quote_spaced(value: str) -> str:
    if not value.strip():
        return "-"
    if any(c.isspace() for c in value):
        return f'"{value}"'
    return value


def _is_sequence(arg: Any) -> bool:
    return isinstance(arg, Iterable) and not isinstance(arg, (str, bytes, bytearray, Mapping))


def normalize_args(args: Iterable[Any] | None, keep_arg_breaks: bool = False) -> List[str]:
    """
    Render command arguments into shell tokens:

      - None is dropped
      - bools become true/false
      - floats keep at most one decimal
      - string sequences expand positionally
      - blank values become "-" and whitespace-bearing values are double-quoted
    """
    normalized: List[str] = []
    if args is None:
        return normalized

    for arg in args:
        if arg is None:
            continue
        if isinstance(arg, str) and arg == ARG_BREAK:
            if keep_arg_breaks:
                normalized.append(ARG_BREAK)
        elif isinstance(arg, bool):
            normalized.append("true" if arg else "false")
        elif isinstance(arg, float):
            normalized.append(f"{arg:.1f}".removesuffix(".0"))
        elif _is_sequence(arg):
            normalized.extend(_quote_spaced(str(value)) for value in arg)
        else:
            normalized.append(_quote_spaced(str(arg)))

    return normalized


def format_command(command: str, *args: Any) -> str:
    """Returns the command followed by its normalized arguments."""
    return " ".join([command, *normalize_args(args)])


def safe_arg(arg: str) -> str:
    if len(arg) >= 2 and arg.startswith('"') and arg.endswith('"'):
        return arg  # already quoted

    if any(c in arg for c in (" ", "\t", '"')):
        arg = arg.replace("\t", " ").replace('"', '\\"')
        arg = f'"{arg}"'

    return arg


def to_bash(command: str, args: Iterable[Any] | None, comment: str | None = None) -> str:
    """
    Render a command as a readable multi-line bash invocation, one argument
    per line with options paired with their values.
    """
    lines: List[str] = []
    if comment and comment.strip():
        lines.append(f"# {comment}")
        lines.append("")

    normalized = normalize_args(args, keep_arg_breaks=True)
    parts: List[str] = []
    i = 0
    while i < len(normalized):
        arg = normalized[i]
        i += 1
        if arg == ARG_BREAK:
            continue

        item = safe_arg(arg)
        if arg.startswith("-") and i < len(normalized):
            nxt = normalized[i]
            if not nxt.startswith("-") and nxt != ARG_BREAK:
                item += f" {safe_arg(nxt)}"
                i += 1
        parts.append(item)

    lines.append(command + "".join(f" \\\n    {p}" for p in parts))
    return "\n".join(lines) + "\n"
