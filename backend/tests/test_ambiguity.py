from __future__ import annotations

from beacon.enforcement.ambiguity import detect_ambiguities


def counter_ids():
    counter = {"value": 0}

    def factory(prefix: str) -> str:
        counter["value"] += 1
        return f"{prefix}_{counter['value']}"

    return factory


def test_contradictory_length_guidance_requires_user_input() -> None:
    flags = detect_ambiguities(
        "Provide a brief yet comprehensive narrative of your program.",
        id_factory=counter_ids(),
    )

    assert len(flags) == 1
    flag = flags[0]
    assert flag.id == "amb_1"
    assert flag.type == "CONTRADICTORY"
    assert flag.requires_user_input is True
    assert '"brief"' in flag.description and '"comprehensive"' in flag.description
    assert len(flag.source_texts) == 2
    assert flag.resolved is False


def test_vague_requirements_are_informational() -> None:
    flags = detect_ambiguities("Request an adequate budget and report progress as needed.")

    assert [flag.type for flag in flags] == ["VAGUE", "VAGUE"]
    assert all(flag.requires_user_input is False for flag in flags)
    assert "adequate budget" in flags[0].description


def test_inconsistent_page_and_word_limits_are_flagged() -> None:
    flags = detect_ambiguities("The narrative must not exceed 2 pages or 5000 words.")

    assert [flag.type for flag in flags] == ["SCOPE_UNCLEAR"]
    assert flags[0].requires_user_input is True
    assert flags[0].source_texts == ["2 pages", "5000 words"]


def test_consistent_page_and_word_limits_are_not_flagged() -> None:
    assert detect_ambiguities("The narrative must not exceed 2 pages or 1000 words.") == []


def test_clear_instructions_produce_no_flags() -> None:
    assert detect_ambiguities("Describe the population served and the outcomes you will measure.") == []
