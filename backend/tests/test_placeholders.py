from __future__ import annotations

import pytest

from beacon.enforcement.models import Placeholder
from beacon.enforcement.placeholders import (
    PLACEHOLDER_PATTERN,
    PlaceholderIdAllocator,
    build_placeholder_only_content,
    format_placeholder,
    is_placeholder_only,
    normalize_model_placeholders,
    parse_placeholders,
    strip_placeholders,
    summarize_placeholders,
    unresolved_placeholders,
)


def counter_ids():
    counter = {"value": 0}

    def factory(prefix: str) -> str:
        counter["value"] += 1
        return f"{prefix}_{counter['value']}"

    return factory


def test_format_placeholder_sanitizes_description_and_parses_back() -> None:
    token = format_placeholder("MISSING_DATA", "Budget: total [2024]", "budget_total")

    assert token == "[[PLACEHOLDER:MISSING_DATA:Budget - total (2024):budget_total]]"
    assert PLACEHOLDER_PATTERN.fullmatch(token)

    parsed = parse_placeholders(f"Intro text. {token}", section_id="sec-1")
    assert len(parsed) == 1
    assert parsed[0].id == "budget_total"
    assert parsed[0].type == "MISSING_DATA"
    assert parsed[0].description == "Budget - total (2024)"
    assert parsed[0].section_id == "sec-1"
    assert parsed[0].position == len("Intro text. ")


def test_format_placeholder_rejects_ids_without_allowed_characters() -> None:
    with pytest.raises(ValueError):
        format_placeholder("MISSING_DATA", "Anything", "!!!")


def test_normalize_model_placeholders_repairs_ids_and_converts_legacy_markers() -> None:
    allocator = PlaceholderIdAllocator(id_factory=counter_ids())
    raw = (
        "We operate [PLACEHOLDER: number of sites] locations. "
        "Budget is [[PLACEHOLDER:MISSING_DATA:Budget total:auto]]. "
        "Staff: [[PLACEHOLDER:MISSING_DATA:Staff count:staff]] and "
        "[[PLACEHOLDER:missing_data:Staff again:staff]]."
    )

    normalized, rewrites = normalize_model_placeholders(raw, allocator)

    assert rewrites == 3
    ids = [item.id for item in parse_placeholders(normalized)]
    assert ids == ["input_3", "ph_1", "staff", "ph_2"]
    assert len(set(ids)) == len(ids)
    assert "[PLACEHOLDER:" not in strip_placeholders(normalized)


def test_normalize_model_placeholders_leaves_valid_tokens_alone() -> None:
    token = "[[PLACEHOLDER:VERIFICATION_NEEDED:Confirm the 2023 total:total_2023]]"
    allocator = PlaceholderIdAllocator(id_factory=counter_ids())

    normalized, rewrites = normalize_model_placeholders(f"Served {token} families.", allocator)

    assert rewrites == 0
    assert normalized == f"Served {token} families."


def test_placeholder_only_content_has_one_user_input_token_and_no_prose() -> None:
    content = build_placeholder_only_content(
        "Program Description",
        description="Describe the program model",
        allocator=PlaceholderIdAllocator(id_factory=counter_ids()),
    )

    placeholders = parse_placeholders(content)
    assert [item.type for item in placeholders] == ["MISSING_DATA", "USER_INPUT_REQUIRED"]
    assert is_placeholder_only(content)
    assert "Program Description" in placeholders[0].description


def test_allocator_skips_ids_already_in_use() -> None:
    sequence = iter(["dup", "dup", "fresh"])
    allocator = PlaceholderIdAllocator(id_factory=lambda prefix: next(sequence))

    assert allocator.allocate("ph") == "dup"
    assert allocator.allocate("ph") == "fresh"
    assert allocator.claim("fresh") is False


def test_allocator_gives_up_when_factory_never_produces_a_new_id() -> None:
    allocator = PlaceholderIdAllocator(existing=["same"], id_factory=lambda prefix: "same")

    with pytest.raises(RuntimeError):
        allocator.allocate("ph")


def test_unresolved_placeholders_excludes_resolved_ids() -> None:
    content = (
        "[[PLACEHOLDER:MISSING_DATA:Enrollment:enrollment]] "
        "[[PLACEHOLDER:USER_INPUT_REQUIRED:Director name:director]]"
    )

    remaining = unresolved_placeholders(content, ["enrollment"])

    assert [item.id for item in remaining] == ["director"]


def test_summary_counts_verification_needed_as_non_blocking() -> None:
    placeholders = [
        Placeholder(id="a", section_id="s", type="MISSING_DATA", description="A"),
        Placeholder(id="b", section_id="s", type="VERIFICATION_NEEDED", description="B"),
        Placeholder(id="c", section_id="s", type="USER_INPUT_REQUIRED", description="C", resolved=True),
    ]

    summary = summarize_placeholders(placeholders)

    assert summary.total == 3
    assert summary.unresolved == 2
    assert summary.blocking == 1
    assert summary.by_type["VERIFICATION_NEEDED"] == 1
    assert summary.by_type["USER_INPUT_REQUIRED"] == 0
