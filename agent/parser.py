"""
agent/parser.py — Analyst Document Parser

Treats a model reply as a markdown document containing fenced code blocks.

The convention:
  - the model writes ```signal-deck (or ```python) blocks for code it wants run
  - after execution the loop appends a ```result block right after the code
  - on the next turn the model sees both its code and the real output

The model must never author ```result blocks itself. parse() deletes them
before anything downstream can look at the document, so a forged "result"
can never be mistaken for a real one.

This is a line-oriented fence scanner, not a language-aware parser: a line
inside a code block that looks like a closing fence (e.g. inside a string
literal) closes the block early.

Usage:
    doc = parse(reply)
    updated = doc
    for block in get_executable_blocks(doc):
        target = relocate_block(updated, block)           # offsets moved
        updated = inject_result(updated, target, "3 lights on")
    text = get_text(updated)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# Languages whose blocks are executed in the sandbox
EXECUTABLE_LANGUAGES: frozenset[str] = frozenset({"signal-deck", "python"})

# Language tag reserved for injected execution output
RESULT_TAG = "result"

_FENCE_OPEN = re.compile(r"^(\s*)```(\w[\w-]*)\s*$")
_FENCE_CLOSE = re.compile(r"^(\s*)```\s*$")

_COMMENT_MARKERS = ("#", "//")


# ─────────────────────────────────────────────────────────────────────────────
# Types
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CodeBlock:
    """A fenced block. Line numbers are 0-indexed and point at the fence lines."""
    language: str
    code: str
    start_line: int
    end_line: int
    has_result: bool = False


@dataclass(frozen=True)
class ParsedDocument:
    """
    Lines of a document plus the blocks found in them.

    Line offsets go stale after any edit; the only way to get fresh offsets
    is to parse again (inject_result does this for you).
    """
    lines: tuple[str, ...]
    code_blocks: tuple[CodeBlock, ...]


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def get_text(doc: ParsedDocument) -> str:
    return "\n".join(doc.lines)


def get_executable_blocks(doc: ParsedDocument) -> list[CodeBlock]:
    """Blocks in an executable language that don't already carry a result."""
    return [
        b for b in doc.code_blocks
        if b.language in EXECUTABLE_LANGUAGES and not b.has_result
    ]


def strip_result_blocks(text: str) -> str:
    """
    Remove every ```result block, opening fence through closing fence.

    An unclosed result fence swallows the rest of the text.
    """
    lines = text.split("\n")
    cleaned: list[str] = []
    i = 0

    while i < len(lines):
        opening = _FENCE_OPEN.match(lines[i])
        if opening and opening.group(2) == RESULT_TAG:
            j = i + 1
            while j < len(lines) and not _FENCE_CLOSE.match(lines[j]):
                j += 1
            i = j + 1
            continue
        cleaned.append(lines[i])
        i += 1

    return "\n".join(cleaned)


def parse(text: str, sanitize: bool = True) -> ParsedDocument:
    """
    Split text into lines and extract fenced code blocks.

    An opening fence with no closing fence before the end is left alone as
    plain text. With sanitize=True (the default) result blocks are stripped
    first; pass sanitize=False only for text whose result blocks were
    written by the loop itself.
    """
    if sanitize:
        text = strip_result_blocks(text)

    lines = text.split("\n")
    blocks: list[CodeBlock] = []
    i = 0

    while i < len(lines):
        opening = _FENCE_OPEN.match(lines[i])
        if not opening:
            i += 1
            continue

        j = i + 1
        while j < len(lines) and not _FENCE_CLOSE.match(lines[j]):
            j += 1

        if j >= len(lines):
            # unterminated: treat the fence line as prose
            i += 1
            continue

        has_result = False
        if j + 1 < len(lines):
            follower = _FENCE_OPEN.match(lines[j + 1])
            has_result = bool(follower and follower.group(2) == RESULT_TAG)

        blocks.append(CodeBlock(
            language=opening.group(2),
            code="\n".join(lines[i + 1:j]),
            start_line=i,
            end_line=j,
            has_result=has_result,
        ))
        i = j + 1

    return ParsedDocument(lines=tuple(lines), code_blocks=tuple(blocks))


def inject_result(doc: ParsedDocument, block: CodeBlock, result: str) -> ParsedDocument:
    """
    Return a new document with a ```result block right after `block`.

    The input document is left untouched. The returned document is re-parsed
    (without sanitizing) so every block's offsets are correct again.
    """
    if result.endswith("\n"):
        result = result[:-1]

    insert_at = block.end_line + 1
    new_lines = [
        *doc.lines[:insert_at],
        f"```{RESULT_TAG}",
        result,
        "```",
        *doc.lines[insert_at:],
    ]
    return parse("\n".join(new_lines), sanitize=False)


def relocate_block(doc: ParsedDocument, block: CodeBlock) -> Optional[CodeBlock]:
    """
    Find `block` again in a document derived from the one it came from.

    Matches the first result-less executable block with the same language
    and code, so identical blocks are taken in document order as each one
    receives its result.
    """
    for candidate in get_executable_blocks(doc):
        if candidate.language == block.language and candidate.code == block.code:
            return candidate
    return None


def is_comment_only(code: str) -> bool:
    """True if every non-blank line is a comment (nothing would run)."""
    for line in code.split("\n"):
        stripped = line.strip()
        if stripped and not stripped.startswith(_COMMENT_MARKERS):
            return False
    return True
