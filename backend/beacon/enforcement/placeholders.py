from __future__ import annotations

import re
from typing import Callable, Iterable
from uuid import uuid4

from beacon.enforcement.models import Placeholder, PlaceholderSummary, PlaceholderType

# Group 1 = type, group 2 = human description, group 3 = id.
PLACEHOLDER_PATTERN = re.compile(r"\[\[PLACEHOLDER:([A-Z_]+):([^:\]]+):([a-z0-9_]+)\]\]")
PLACEHOLDER_TYPES: tuple[PlaceholderType, ...] = (
    "MISSING_DATA",
    "USER_INPUT_REQUIRED",
    "VERIFICATION_NEEDED",
)
BLOCKING_PLACEHOLDER_TYPES = frozenset({"MISSING_DATA", "USER_INPUT_REQUIRED"})

# Markers models emit when they half-follow the grammar.
LEGACY_PLACEHOLDER_PATTERN = re.compile(r"(?<!\[)\[PLACEHOLDER\s*:\s*([^\]]+?)\s*\](?!\])")
LOOSE_TOKEN_PATTERN = re.compile(r"\[\[PLACEHOLDER:([A-Za-z_]+):([^\]]*?):([A-Za-z0-9_-]*)\]\]")
RESERVED_IDS = frozenset({"", "auto", "id", "placeholder"})
MAX_DESCRIPTION_CHARS = 200

IdFactory = Callable[[str], str]


def default_id_factory(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def sanitize_description(value: str, *, max_chars: int = MAX_DESCRIPTION_CHARS) -> str:
    """Make free text safe to embed as the description group of a placeholder token."""
    cleaned = value.replace(":", " -").replace("[", "(").replace("]", ")")
    cleaned = " ".join(cleaned.split()).strip()
    if len(cleaned) > max_chars:
        cleaned = cleaned[: max_chars - 3].rstrip() + "..."
    return cleaned or "Information required"


def sanitize_id(value: str) -> str:
    return re.sub(r"[^a-z0-9_]+", "_", value.lower()).strip("_")


def format_placeholder(placeholder_type: PlaceholderType, description: str, placeholder_id: str) -> str:
    safe_id = sanitize_id(placeholder_id)
    if not safe_id:
        raise ValueError("Placeholder id must contain at least one of [a-z0-9_].")
    return f"[[PLACEHOLDER:{placeholder_type}:{sanitize_description(description)}:{safe_id}]]"


def parse_placeholders(content: str, *, section_id: str = "") -> list[Placeholder]:
    placeholders: list[Placeholder] = []
    for match in PLACEHOLDER_PATTERN.finditer(content):
        placeholder_type = match.group(1)
        if placeholder_type not in PLACEHOLDER_TYPES:
            continue
        placeholders.append(
            Placeholder(
                id=match.group(3),
                section_id=section_id,
                type=placeholder_type,  # type: ignore[arg-type]
                description=match.group(2),
                position=match.start(),
            )
        )
    return placeholders


def placeholder_spans(content: str) -> list[tuple[int, int]]:
    return [(match.start(), match.end()) for match in PLACEHOLDER_PATTERN.finditer(content)]


def strip_placeholders(content: str) -> str:
    return PLACEHOLDER_PATTERN.sub(" ", content)


def is_placeholder_only(content: str) -> bool:
    return bool(PLACEHOLDER_PATTERN.search(content)) and not strip_placeholders(content).strip()


def unresolved_placeholders(content: str, resolved_ids: Iterable[str] = ()) -> list[Placeholder]:
    resolved = set(resolved_ids)
    return [item for item in parse_placeholders(content) if item.id not in resolved]


def summarize_placeholders(placeholders: Iterable[Placeholder]) -> PlaceholderSummary:
    by_type = {placeholder_type: 0 for placeholder_type in PLACEHOLDER_TYPES}
    total = 0
    unresolved = 0
    blocking = 0
    for item in placeholders:
        total += 1
        if item.resolved:
            continue
        unresolved += 1
        by_type[item.type] = by_type.get(item.type, 0) + 1
        if item.type in BLOCKING_PLACEHOLDER_TYPES:
            blocking += 1
    return PlaceholderSummary(total=total, unresolved=unresolved, blocking=blocking, by_type=by_type)


class PlaceholderIdAllocator:
    """Hands out placeholder ids that are unique within one section's content."""

    def __init__(self, existing: Iterable[str] = (), id_factory: IdFactory = default_id_factory) -> None:
        self._used = set(existing)
        self._id_factory = id_factory

    def allocate(self, prefix: str) -> str:
        for _ in range(64):
            candidate = sanitize_id(self._id_factory(prefix))
            if candidate and candidate not in self._used:
                self._used.add(candidate)
                return candidate
        raise RuntimeError("Could not allocate a unique placeholder id.")

    def claim(self, placeholder_id: str) -> bool:
        if placeholder_id in self._used:
            return False
        self._used.add(placeholder_id)
        return True


def normalize_model_placeholders(text: str, allocator: PlaceholderIdAllocator) -> tuple[str, int]:
    """Rewrite model-emitted markers into the strict grammar.

    Converts single-bracket ``[PLACEHOLDER: ...]`` markers, repairs tokens with an
    unknown type, a colon-laden description or an invalid id, and re-issues ids
    that are reserved or already used earlier in the same text.
    """
    rewrites = 0

    def _token(match: re.Match[str]) -> str:
        nonlocal rewrites
        raw_type = match.group(1).upper()
        placeholder_type: PlaceholderType = (
            raw_type if raw_type in PLACEHOLDER_TYPES else "USER_INPUT_REQUIRED"  # type: ignore[assignment]
        )
        raw_id = match.group(3)
        description = match.group(2)
        if raw_id == sanitize_id(raw_id) and raw_id not in RESERVED_IDS and allocator.claim(raw_id):
            placeholder_id = raw_id
        else:
            placeholder_id = allocator.allocate("ph")
        rebuilt = format_placeholder(placeholder_type, description, placeholder_id)
        if rebuilt != match.group(0):
            rewrites += 1
        return rebuilt

    normalized = LOOSE_TOKEN_PATTERN.sub(_token, text)

    def _legacy(match: re.Match[str]) -> str:
        nonlocal rewrites
        rewrites += 1
        return format_placeholder("USER_INPUT_REQUIRED", match.group(1), allocator.allocate("input"))

    # Bracketed tokens first, so ids issued for legacy markers are not re-checked as duplicates.
    normalized = LEGACY_PLACEHOLDER_PATTERN.sub(_legacy, normalized)
    return normalized, rewrites


def build_placeholder_only_content(
    section_name: str,
    *,
    description: str | None = None,
    allocator: PlaceholderIdAllocator | None = None,
) -> str:
    """Content emitted when drafting is skipped: placeholder tokens and nothing else."""
    allocator = allocator or PlaceholderIdAllocator()
    missing = format_placeholder(
        "MISSING_DATA",
        f'No supporting sources found for "{section_name}". Upload relevant documents to the '
        "knowledge base or provide this content manually.",
        allocator.allocate("gen"),
    )
    request = f"Draft content for {section_name} based on your organization's actual data"
    if description:
        request = f"{request} (requirement - {description})"
    user_input = format_placeholder("USER_INPUT_REQUIRED", request, allocator.allocate("gen"))
    return f"{missing}\n\n{user_input}"
