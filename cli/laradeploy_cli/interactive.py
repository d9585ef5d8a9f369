from __future__ import annotations

import questionary
import typer
from questionary import Choice, Style

from . import console

# questionary gives inline, non-fullscreen selections for yes/no decisions.

_SELECT_STYLE = Style(
    [
        ("pointer", "ansiyellow bold"),
        ("selected", "ansicyan bold"),
        ("highlighted", "ansicyan bold"),
        ("instruction", "ansiblack"),
    ]
)


def confirm_choice(message: object, *, default: bool = True) -> bool:
    prompt = str(getattr(message, "plain", message))
    choices = [
        Choice(title="Yes", value=True),
        Choice(title="No", value=False),
    ]
    try:
        result = questionary.select(
            prompt,
            choices=choices,
            default=choices[0] if default else choices[1],
            use_shortcuts=False,
            pointer="▶",
            style=_SELECT_STYLE,
        ).ask()
    except KeyboardInterrupt:
        _abort_interactive()
    if result is None:
        _abort_interactive()
    return bool(result)


def prompt_text(message: str, *, default: str | None = None) -> str:
    if default is None:
        return typer.prompt(message).strip()
    return typer.prompt(message, default=default, show_default=bool(default)).strip()


def prompt_secret(message: str, *, confirm: bool = False) -> str:
    return typer.prompt(f"{message} (input hidden)", hide_input=True, confirmation_prompt=confirm)


def _abort_interactive() -> None:
    console.err("Aborted by user.")
    raise typer.Exit(code=1)
