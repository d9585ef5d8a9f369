"""Line-level editing of dotenv files.

A line belongs to ``KEY`` when it starts with ``KEY=``. Only the first such
line is rewritten; later duplicates are kept as they are. Keys without a
matching line are appended at the end of the file.
"""
from __future__ import annotations

import re
from typing import Mapping

_ENV_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_NEEDS_QUOTES_RE = re.compile(r"[\s#\"'`$\\]")


def validate_key(key: str) -> str:
    if not _ENV_KEY_RE.fullmatch(key or ""):
        raise ValueError(f"Invalid env key: {key!r}")
    return key


def format_value(value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError("Env values cannot span multiple lines.")
    if not value or not _NEEDS_QUOTES_RE.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
    return f'"{escaped}"'


def substitute(content: str, key: str, value: str) -> str:
    prefix = f"{validate_key(key)}="
    replacement = f"{prefix}{format_value(value)}"
    lines = content.splitlines(keepends=True)
    for idx, line in enumerate(lines):
        if line.startswith(prefix):
            ending = line[len(line.rstrip("\r\n")):]
            lines[idx] = replacement + ending
            return "".join(lines)
    if content and not content.endswith("\n"):
        content += "\n"
    return f"{content}{replacement}\n"


def apply_substitutions(content: str, values: Mapping[str, str]) -> str:
    for key, value in values.items():
        content = substitute(content, key, value)
    return content
