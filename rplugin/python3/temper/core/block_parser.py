"""
Code block parsing utilities for the Temper plugin.

This module finds the fenced python and julia code blocks of a Markdown note.
Each executable block is numbered in document order; that number is the index
of the matching code cell in the paired notebook.
"""
from dataclasses import dataclass
from typing import List, Optional

FENCE = "```"
EXECUTABLE_LANGUAGES = ("python", "julia")


@dataclass
class CodeBlock:
    """A fenced code block of a note."""

    code: str
    cell_index: int  # 0-based, among python/julia blocks only
    language: str
    start_line: int  # 1-indexed line of the opening fence
    end_line: int  # 1-indexed line of the closing fence (or last line if unterminated)


def _fence_language(stripped: str) -> str:
    info = stripped[len(FENCE):].strip().lstrip("{").rstrip("}")
    return info.split()[0].lower() if info else ""


def _executable_language(language: str) -> Optional[str]:
    for name in EXECUTABLE_LANGUAGES:
        if language.startswith(name):
            return name
    return None


def extract_all_blocks(lines: List[str]) -> List[CodeBlock]:
    """
    Extract every python and julia block of a note.

    Fences of other languages are skipped but still tracked, so that their
    contents are never mistaken for a block boundary.

    Args:
        lines: List of buffer lines

    Returns:
        list: CodeBlock objects in document order
    """
    blocks = []
    index = 0
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()
        if not stripped.startswith(FENCE):
            i += 1
            continue

        start = i
        language = _executable_language(_fence_language(stripped))
        i += 1
        while i < len(lines) and lines[i].strip() != FENCE:
            i += 1
        end = min(i, len(lines) - 1)

        if language is not None:
            blocks.append(
                CodeBlock(
                    code="\n".join(lines[start + 1:i]),
                    cell_index=index,
                    language=language,
                    start_line=start + 1,
                    end_line=end + 1,
                )
            )
            index += 1
        i += 1

    return blocks


def find_block_at(lines: List[str], lnum: int) -> Optional[CodeBlock]:
    """
    Find the executable block containing the given line, fences included.

    Args:
        lines: List of buffer lines
        lnum: Current line number (1-indexed)

    Returns:
        CodeBlock or None if the line is outside every python/julia block
    """
    for block in extract_all_blocks(lines):
        if block.start_line <= lnum <= block.end_line:
            return block
    return None
