"""
Word-level diff rendering for revision previews.

Two engines produce the same HTML vocabulary (`wikEdDiffDelete` /
`wikEdDiffInsert` spans), chosen when the revision pipeline is built:

* RichDiffEngine aligns word sequences, so an insertion does not shift
  every following word into a change.
* SimpleDiffEngine compares words position by position.
"""

import difflib
import html
import re
from typing import Protocol

_TOKEN = re.compile(r"(\s+)")

DELETE_SPAN = '<span class="wikEdDiffDelete">{}</span>'
INSERT_SPAN = '<span class="wikEdDiffInsert">{}</span>'


class DiffEngine(Protocol):
    def diff(self, original: str, revised: str) -> str: ...


def _tokens(text: str) -> list[str]:
    """Words and the whitespace runs between them, in order."""
    return [t for t in _TOKEN.split(text) if t]


class RichDiffEngine:
    def __init__(self, escape: bool = True) -> None:
        self.escape = escape

    def _fmt(self, text: str) -> str:
        return html.escape(text) if self.escape else text

    def diff(self, original: str, revised: str) -> str:
        a, b = _tokens(original), _tokens(revised)
        matcher = difflib.SequenceMatcher(a=a, b=b, autojunk=False)
        out: list[str] = []
        for op, i1, i2, j1, j2 in matcher.get_opcodes():
            if op == "equal":
                out.append(self._fmt("".join(a[i1:i2])))
                continue
            deleted = "".join(a[i1:i2])
            inserted = "".join(b[j1:j2])
            if deleted.strip():
                out.append(DELETE_SPAN.format(self._fmt(deleted)))
            if inserted.strip():
                out.append(INSERT_SPAN.format(self._fmt(inserted)))
            elif not deleted.strip():
                # whitespace-only change
                out.append(self._fmt(inserted or deleted))
        return "".join(out)


class SimpleDiffEngine:
    def __init__(self, escape: bool = True) -> None:
        self.escape = escape

    def _fmt(self, text: str) -> str:
        return html.escape(text) if self.escape else text

    def diff(self, original: str, revised: str) -> str:
        a, b = _TOKEN.split(original), _TOKEN.split(revised)
        out: list[str] = []
        for i in range(max(len(a), len(b))):
            old = a[i] if i < len(a) else ""
            new = b[i] if i < len(b) else ""
            if old == new:
                out.append(self._fmt(old))
                continue
            if old.strip():
                out.append(DELETE_SPAN.format(self._fmt(old)))
            if new.strip():
                out.append(INSERT_SPAN.format(self._fmt(new)))
            if not old.strip() and not new.strip():
                out.append(self._fmt(new or old))
        return "".join(out)
