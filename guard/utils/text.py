"""Text helpers shared by every component that hands strings to google-re2."""

from __future__ import annotations


def re2_safe(text: str) -> str:
    """Return ``text`` in a form google-re2 can encode.

    re2 works on UTF-8 and raises ``UnicodeEncodeError`` on lone surrogates,
    which is what ``surrogateescape`` decoding and undecodable file names
    produce. Each surrogate becomes a single ``?``, so character offsets and
    line numbers are unchanged.
    """
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return text.encode("utf-8", errors="replace").decode("utf-8")
    return text
