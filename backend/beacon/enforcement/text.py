from __future__ import annotations

import re

BLOCK_TAG_PATTERN = re.compile(
    r"</?(?:p|div|br|li|ul|ol|h[1-6]|blockquote|section|article|tr|table)\b[^>]*>",
    flags=re.IGNORECASE,
)
ANY_TAG_PATTERN = re.compile(r"<[^>]+>")
PARAGRAPH_BREAK_PATTERN = re.compile(r"\n\s*\n+")
MIN_PARAGRAPH_WORDS = 3
BLOCK_SEPARATOR = "\n\n"


def normalize_text(value: str) -> str:
    return " ".join(value.split()).strip()


def normalize_key(value: str) -> str:
    return " ".join(re.findall(r"[a-z0-9]+", value.lower()))


def word_count(value: str) -> int:
    return len(re.findall(r"\b[\w'-]+\b", value))


def strip_markup(value: str) -> str:
    """Turn model output (plain text or light HTML) into blank-line separated paragraphs."""
    text = value.replace("\r\n", "\n")
    text = BLOCK_TAG_PATTERN.sub("\n\n", text)
    text = ANY_TAG_PATTERN.sub("", text)
    text = text.replace("&nbsp;", " ").replace("&amp;", "&")
    paragraphs = [normalize_text(part) for part in PARAGRAPH_BREAK_PATTERN.split(text)]
    return "\n\n".join(part for part in paragraphs if part)


def split_blocks(value: str) -> list[str]:
    """Every paragraph-level block of the text, headings and short lines included."""
    cleaned = strip_markup(value)
    if not cleaned:
        return []
    return cleaned.split("\n\n")


def is_substantive(block: str, *, min_words: int = MIN_PARAGRAPH_WORDS) -> bool:
    return word_count(block) >= min_words or bool(re.search(r"\d", block))


def block_offsets(blocks: list[str]) -> list[int]:
    offsets: list[int] = []
    cursor = 0
    for block in blocks:
        offsets.append(cursor)
        cursor += len(block) + len(BLOCK_SEPARATOR)
    return offsets


def block_regions(value: str) -> list[tuple[int, int]]:
    """(start, end) of each paragraph-level block in ``value``, separators excluded."""
    regions: list[tuple[int, int]] = []
    cursor = 0
    for match in PARAGRAPH_BREAK_PATTERN.finditer(value):
        regions.append((cursor, match.start()))
        cursor = match.end()
    regions.append((cursor, len(value)))
    return regions
