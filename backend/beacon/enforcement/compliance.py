from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Callable

from beacon.enforcement.coverage import score_proposal, score_section
from beacon.enforcement.models import (
    ChecklistItemStatus,
    ComplianceIssue,
    ComplianceStatus,
    Placeholder,
    ProposalSnapshot,
    SectionComplianceStatus,
    SectionCoverage,
    SectionSnapshot,
)
from beacon.enforcement.placeholders import strip_placeholders, summarize_placeholders, unresolved_placeholders
from beacon.enforcement.text import strip_markup, word_count
from beacon.enforcement.thresholds import DEFAULT_THRESHOLDS, EnforcementThresholds


def section_text(content: str) -> str:
    """Visible prose of a section: markup removed, placeholder tokens dropped."""
    return strip_markup(strip_placeholders(content))


def has_content(section: SectionSnapshot) -> bool:
    return bool(section.content.strip())


class ComplianceChecker:
    """Derives a point-in-time compliance snapshot for one proposal."""

    def __init__(
        self,
        thresholds: EnforcementThresholds = DEFAULT_THRESHOLDS,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._thresholds = thresholds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check(self, proposal: ProposalSnapshot) -> ComplianceStatus:
        section_statuses: list[SectionComplianceStatus] = []
        coverages: list[SectionCoverage] = []
        all_placeholders: list[Placeholder] = []

        for section in proposal.sections:
            coverage = None
            if section.paragraphs is not None and has_content(section):
                coverage = score_section(section.id, section.name, section.paragraphs, self._thresholds)
                coverages.append(coverage)
            placeholders = unresolved_placeholders(section.content, section.resolved_placeholder_ids)
            all_placeholders.extend(placeholders)
            section_statuses.append(self.check_section(section, coverage, placeholders))

        proposal_issues = self.check_proposal_level(proposal)
        checklist = self.checklist_status(proposal)
        for item in checklist:
            if item.status == "INCOMPLETE":
                proposal_issues.append(
                    ComplianceIssue(
                        code="CHECKLIST_INCOMPLETE",
                        severity="ERROR",
                        message=f'Required checklist item "{item.name}" has no mapped section with content.',
                    )
                )

        proposal_coverage = score_proposal(proposal.id, coverages, self._thresholds)
        issues = [issue for status in section_statuses for issue in status.issues] + proposal_issues
        error_count = sum(1 for issue in issues if issue.severity == "ERROR")
        warning_count = sum(1 for issue in issues if issue.severity == "WARNING")

        return ComplianceStatus(
            proposal_id=proposal.id,
            can_export=error_count == 0,
            overall_score=proposal_coverage.overall_score,
            overall_confidence=proposal_coverage.confidence,
            sections=section_statuses,
            proposal_issues=proposal_issues,
            checklist=checklist,
            placeholders=summarize_placeholders(all_placeholders),
            error_count=error_count,
            warning_count=warning_count,
            checked_at=self._clock(),
        )

    def check_section(
        self,
        section: SectionSnapshot,
        coverage: SectionCoverage | None,
        placeholders: list[Placeholder],
    ) -> SectionComplianceStatus:
        visible = section_text(section.content)
        words = word_count(visible)
        chars = len(visible)
        issues: list[ComplianceIssue] = []

        def add(code: str, severity: str, message: str) -> None:
            issues.append(
                ComplianceIssue(
                    code=code,
                    severity=severity,  # type: ignore[arg-type]
                    message=message,
                    section_id=section.id,
                    section_name=section.name,
                )
            )

        if section.word_limit:
            hard_limit = math.floor(section.word_limit * (1 + self._thresholds.word_limit_tolerance))
            if words > hard_limit:
                add(
                    "WORD_LIMIT_EXCEEDED",
                    "ERROR",
                    f"{section.name} has {words} words; the limit is {section.word_limit} "
                    f"(more than {self._thresholds.word_limit_tolerance:.0%} over).",
                )
            elif words > section.word_limit:
                add(
                    "WORD_LIMIT_WARNING",
                    "WARNING",
                    f"{section.name} has {words} words; the limit is {section.word_limit}.",
                )

        if section.char_limit and chars > section.char_limit:
            add(
                "CHAR_LIMIT_EXCEEDED",
                "ERROR",
                f"{section.name} has {chars} characters; the limit is {section.char_limit}.",
            )

        if section.required and not has_content(section):
            add("REQUIRED_SECTION_EMPTY", "ERROR", f"{section.name} is required but empty.")

        if placeholders:
            add(
                "UNRESOLVED_PLACEHOLDER",
                "ERROR",
                f"{section.name} has {len(placeholders)} unresolved placeholder(s).",
            )

        if section.used_generic_knowledge and has_content(section):
            add(
                "GENERIC_KNOWLEDGE",
                "WARNING",
                f"{section.name} was generated without sufficient supporting sources.",
            )

        if coverage is not None and coverage.coverage_score is not None:
            if coverage.coverage_score < self._thresholds.coverage_low:
                add(
                    "COVERAGE_CRITICAL",
                    "ERROR",
                    f"{section.name} source coverage is {coverage.coverage_score:.0f}% "
                    f"(minimum {self._thresholds.coverage_low:.0f}%).",
                )
            elif coverage.coverage_score < self._thresholds.coverage_medium:
                add(
                    "COVERAGE_LOW",
                    "WARNING",
                    f"{section.name} source coverage is {coverage.coverage_score:.0f}% "
                    f"(recommended {self._thresholds.coverage_medium:.0f}%+).",
                )

        return SectionComplianceStatus(
            section_id=section.id,
            section_name=section.name,
            word_count=words,
            char_count=chars,
            word_limit=section.word_limit,
            char_limit=section.char_limit,
            coverage_score=coverage.coverage_score if coverage else None,
            confidence=coverage.confidence if coverage else "UNKNOWN",
            unresolved_placeholders=len(placeholders),
            issues=issues,
        )

    def check_proposal_level(self, proposal: ProposalSnapshot) -> list[ComplianceIssue]:
        issues: list[ComplianceIssue] = []
        for flag in proposal.ambiguity_flags:
            if flag.requires_user_input and not flag.resolved:
                issues.append(
                    ComplianceIssue(
                        code="UNRESOLVED_AMBIGUITY",
                        severity="ERROR",
                        message=f"Funder instructions need clarification: {flag.description}",
                    )
                )
        if proposal.enforcement_failure:
            issues.append(
                ComplianceIssue(
                    code="ENFORCEMENT_FAILURE",
                    severity="ERROR",
                    message=(
                        "Source verification failed during a previous generation. Regenerate the affected "
                        "sections or verify every claim manually, then clear the flag."
                    ),
                )
            )
        return issues

    def checklist_status(self, proposal: ProposalSnapshot) -> list[ChecklistItemStatus]:
        sections_by_id = {section.id: section for section in proposal.sections}
        statuses: list[ChecklistItemStatus] = []
        for item in proposal.checklist:
            mapped = [sections_by_id[section_id] for section_id in item.mapped_section_ids if section_id in sections_by_id]
            complete = any(has_content(section) for section in mapped)
            if complete:
                status = "COMPLETE"
            elif item.required:
                status = "INCOMPLETE"
            else:
                status = "OPTIONAL"
            statuses.append(
                ChecklistItemStatus(
                    item_id=item.id,
                    name=item.name,
                    required=item.required,
                    status=status,
                    mapped_section_ids=list(item.mapped_section_ids),
                )
            )
        return statuses
