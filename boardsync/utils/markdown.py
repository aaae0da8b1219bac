"""Flatten YouTrack markdown into the plain text Asana notes expect."""

import re

_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]+\)(?:\{[^}]*\})?")
_IMAGE_LEFTOVER_RE = re.compile(r"\.[a-zA-Z]{3,4}\)\{[^}]+\}")
_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1")
_ITALIC_RE = re.compile(r"(?<![\w*])([*_])(?!\s)(.+?)(?<!\s)\1(?![\w*])")
_HEADER_RE = re.compile(r"^\s{0,3}#{1,6}\s+", re.MULTILINE)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def _unfence(match: "re.Match[str]") -> str:
    lines = match.group(0)[3:-3].split("\n")
    # First line is a language identifier when it has no spaces
    if len(lines) > 1 and " " not in lines[0]:
        lines = lines[1:]
    return "\n".join(lines).strip()


def markdown_to_plain(text: str) -> str:
    if not text:
        return ""
    text = _IMAGE_RE.sub("", text)
    text = _IMAGE_LEFTOVER_RE.sub("", text)
    text = _CODE_BLOCK_RE.sub(_unfence, text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _LINK_RE.sub(r"\1 (\2)", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_RE.sub(r"\2", text)
    text = _HEADER_RE.sub("", text)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()
