"""Parse interactive selection menus out of captured output.

Conversational TUIs render pickers as a prompt line followed by one option
per line, with a cursor glyph in front of the highlighted option:

    Select a model for this chat session
    ❯ claude-sonnet-4 (active)
      claude-3.7-sonnet

Both raw and sanitized text are accepted; options are always returned clean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from termharness.ansi import SELECTION_MARKER, clean

_ANNOTATION_RE = re.compile(r"\s*\((active|current|default)\)\s*$")


@dataclass
class MenuOption:
    label: str
    selected: bool = False
    annotations: list[str] = field(default_factory=list)


@dataclass
class Menu:
    prompt: str
    options: list[MenuOption] = field(default_factory=list)

    @property
    def selected(self) -> MenuOption | None:
        for option in self.options:
            if option.selected:
                return option
        return None

    @property
    def labels(self) -> list[str]:
        return [o.label for o in self.options]


def parse_menu(text: str, prompt: str, marker: str = SELECTION_MARKER) -> Menu | None:
    """Find the menu introduced by ``prompt`` and collect its options.

    Option lines are the non-blank lines after the prompt that either carry
    the marker or are indented. Parsing stops at the first line that is
    neither. Returns None if the prompt is not in ``text``.
    """
    lines = clean(text).split("\n")
    for start, line in enumerate(lines):
        if prompt in line:
            break
    else:
        return None

    menu = Menu(prompt=prompt)
    for line in lines[start + 1 :]:
        if not line.strip():
            if menu.options:
                break
            continue
        stripped = line.strip()
        is_selected = stripped.startswith(marker)
        if not is_selected and not line.startswith((" ", "\t")):
            break
        label = stripped.removeprefix(marker).strip() if is_selected else stripped
        annotations = []
        while True:
            m = _ANNOTATION_RE.search(label)
            if not m:
                break
            annotations.insert(0, m.group(1))
            label = label[: m.start()]
        menu.options.append(
            MenuOption(label=label.strip(), selected=is_selected, annotations=annotations)
        )
    return menu


def selected_option(text: str, marker: str = SELECTION_MARKER) -> str | None:
    """Return the label on the last line carrying ``marker``, if any.

    Useful after a redraw, where the picker is repainted without its prompt.
    """
    found = None
    for line in clean(text).split("\n"):
        stripped = line.strip()
        if stripped.startswith(marker):
            label = _ANNOTATION_RE.sub("", stripped.removeprefix(marker))
            found = label.strip()
    return found
