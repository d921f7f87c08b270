"""Named key sequences for send_key_input()."""

from __future__ import annotations

ENTER = "\r"
TAB = "\t"
ESCAPE = "\x1b"
BACKSPACE = "\x7f"
UP = "\x1b[A"
DOWN = "\x1b[B"
RIGHT = "\x1b[C"
LEFT = "\x1b[D"
HOME = "\x1b[H"
END = "\x1b[F"
PAGE_UP = "\x1b[5~"
PAGE_DOWN = "\x1b[6~"
DELETE = "\x1b[3~"
CTRL_C = "\x03"
CTRL_D = "\x04"
CTRL_L = "\x0c"
CTRL_U = "\x15"

KEYS: dict[str, str] = {
    "enter": ENTER,
    "tab": TAB,
    "escape": ESCAPE,
    "backspace": BACKSPACE,
    "up": UP,
    "down": DOWN,
    "right": RIGHT,
    "left": LEFT,
    "home": HOME,
    "end": END,
    "page-up": PAGE_UP,
    "page-down": PAGE_DOWN,
    "delete": DELETE,
    "ctrl-c": CTRL_C,
    "ctrl-d": CTRL_D,
    "ctrl-l": CTRL_L,
    "ctrl-u": CTRL_U,
}


def lookup(name: str) -> bytes:
    """Return the byte sequence for a key name like ``"down"`` or ``"ctrl-c"``."""
    key = name.strip().lower().replace("_", "-")
    if key not in KEYS:
        raise KeyError(f"Unknown key: {name!r} (known: {', '.join(sorted(KEYS))})")
    return KEYS[key].encode()
