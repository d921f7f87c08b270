"""ANSI sanitization — make captured terminal output assertion-friendly.

Only complete, recognized control sequences are removed. Anything that
merely looks like the start of one (a lone ESC, a CSI cut off at the end of
a capture) is left in place so real content is never silently destroyed.
"""

from __future__ import annotations

import re
import unicodedata

# Glyphs that interactive menus use as semantic markers. clean() never drops
# these even if a broader filter would.
SELECTION_MARKER = "❯"
DEFAULT_PRESERVED_GLYPHS = frozenset({SELECTION_MARKER, "›", "●", "○", "◉", "✓", "✔", "✗", "✘"})

_CONTROL_SEQUENCE_RE = re.compile(
    r"""
    \x1b\[[0-?]*[\x20-/]*[@-~]              # CSI: colors, cursor movement, erase
    | \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)     # OSC: window title, hyperlinks
    | \x1b[PX^_][^\x1b]*\x1b\\              # DCS / SOS / PM / APC strings
    | \x1b[()*+][0-9A-Za-z]                 # charset designation
    | \x1bO[@-~]                            # SS3: application-mode keys
    | \x1b[0-9:;<=>?@A-NQ-WYZ\\`a-z{|}~]     # two-byte escapes (save/restore cursor, ...)
    """,
    re.VERBOSE,
)


class AnsiSanitizer:
    """Strips terminal control sequences while keeping visible text intact."""

    def __init__(self, preserved_glyphs: frozenset[str] | set[str] | None = None) -> None:
        self.preserved_glyphs = frozenset(
            DEFAULT_PRESERVED_GLYPHS if preserved_glyphs is None else preserved_glyphs
        )

    def strip(self, text: str) -> str:
        """Remove recognized control-sequence spans.

        Surviving characters keep their order and adjacency. Text without
        control sequences is returned unchanged.
        """
        if "\x1b" not in text:
            return text
        return _CONTROL_SEQUENCE_RE.sub("", text)

    def clean(self, text: str) -> str:
        """strip() plus newline normalization and removal of stray controls.

        Keeps tab and newline; drops other C0/C1 controls and Unicode format
        characters unless they are preserved glyphs.
        """
        text = normalize_newlines(self.strip(text))
        kept = []
        for ch in text:
            if ch in self.preserved_glyphs or ch in ("\t", "\n"):
                kept.append(ch)
                continue
            cp = ord(ch)
            if cp < 0x20 or 0x7F <= cp < 0xA0:
                continue
            if unicodedata.category(ch) == "Cf":
                continue
            kept.append(ch)
        return "".join(kept)


def normalize_newlines(text: str) -> str:
    """Turn terminal line endings (``\\r\\n`` and bare ``\\r``) into ``\\n``."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


_default = AnsiSanitizer()


def strip(text: str) -> str:
    """Remove recognized control sequences using the default sanitizer."""
    return _default.strip(text)


def clean(text: str) -> str:
    """Fully sanitize ``text`` using the default sanitizer."""
    return _default.clean(text)
