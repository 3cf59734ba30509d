"""
Retry feedback and failure messages.

Each builder turns one rejected attempt into text appended to the next
prompt, or into the final error message once the attempts are used up.
Feedback always enumerates the concrete items that were missing.
"""

from __future__ import annotations

from typing import Optional

from primus_docgen.generation.requirements import CORE_FIELD_ORDER, format_answer_for_display
from primus_docgen.models.schemas import (
    AnswerPresenceResult,
    AnswerValue,
    ForbiddenCheckResult,
    RequirementMapping,
)
from primus_docgen.validation.vocabulary import get_vocabulary_store

SECTION_15_FIELDS = ("approved_by", "review_date", "position")


def core_field_location(field_id: str) -> str:
    return "Section 15" if field_id in SECTION_15_FIELDS else "Section 1"


def build_missing_items_feedback(
    presence: AnswerPresenceResult,
    answers: dict[str, AnswerValue],
    mappings: list[RequirementMapping],
) -> str:
    lines = ["", "❌ PREVIOUS ATTEMPT FAILED - REGENERATE WITH ALL REQUIREMENTS:", ""]

    missing_core = [f for f in CORE_FIELD_ORDER if f in presence.missing]
    if missing_core:
        lines.append("MISSING CORE FIELDS (must appear in document):")
        for field in missing_core:
            value = format_answer_for_display(answers.get(field))
            lines.append(f'- {field}: "{value}" (MUST appear in {core_field_location(field)})')
        lines.append("")

    if presence.missing_requirement_headers:
        by_code = {m.code: m for m in mappings}
        lines.append("MISSING REQUIREMENT HEADERS (must use exact format):")
        for code in presence.missing_requirement_headers:
            mapping = by_code.get(code)
            title = mapping.requirement_text[:80] if mapping else "Requirement"
            answer = format_answer_for_display(mapping.answer) if mapping else ""
            lines.append(f'- Missing header "### {code} - {title}" with answer "{answer}"')
        lines.append("")
        lines.append(
            'REMEMBER: Header format is "### {code} - {title}" '
            "(3 hashes, space, code, space, hyphen, space, title)"
        )

    return "\n".join(lines)


def build_section_feedback(section_count: int, word_count: int, required: int = 15, min_words: int = 1000) -> str:
    titles = [f"{s.number}. {s.title}" for s in get_vocabulary_store().mandatory_sections]
    lines = [
        "",
        f"❌ PREVIOUS ATTEMPT INCOMPLETE - ONLY {section_count}/{required} SECTIONS GENERATED",
        "",
        f"You MUST generate ALL {required} sections:",
        *titles,
        "",
    ]
    if word_count < min_words:
        lines += [f"The previous attempt had only {word_count} words; the minimum is {min_words}.", ""]
    lines.append("BUDGET YOUR TOKENS: Make sections 9-15 more concise if needed, but DO NOT SKIP ANY.")
    return "\n".join(lines)


def build_forbidden_feedback(forbidden: ForbiddenCheckResult) -> str:
    lines = ["", "❌ PREVIOUS ATTEMPT REJECTED - FORBIDDEN META-COMMENTARY DETECTED:", ""]
    for description, snippet in zip(forbidden.forbidden_patterns, forbidden.snippets):
        lines.append(f'- {description}: "{" ".join(snippet.split())}"')
    lines += [
        "",
        "Output ONLY the SOP text. Do not address the reader, describe the document, "
        "or announce corrections or inserted requirements.",
    ]
    return "\n".join(lines)


def _context_lines(module_number: str, sub_module_name: Optional[str], document_name: Optional[str]) -> list[str]:
    return [f"Module: {module_number}, Submodule: {sub_module_name or 'N/A'}", f"Document: {document_name or 'N/A'}"]


def build_missing_items_failure(
    attempts: int,
    presence: AnswerPresenceResult,
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
) -> str:
    return "\n".join(
        [
            f"Document generation failed after {attempts} attempts.",
            f"Missing core answers: {', '.join(presence.missing) or 'none'}",
            f"Missing requirement headers: {', '.join(presence.missing_requirement_headers) or 'none'}",
            *_context_lines(module_number, sub_module_name, document_name),
        ]
    )


def build_section_failure(
    attempts: int,
    section_count: int,
    word_count: int,
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
    required: int = 15,
    min_words: int = 1000,
) -> str:
    lines = [
        f"Document generation failed after {attempts} attempts.",
        f"Only {section_count}/{required} sections generated ({word_count} words, minimum {min_words}).",
    ]
    return "\n".join(lines + _context_lines(module_number, sub_module_name, document_name))


def build_forbidden_failure(
    attempts: int,
    forbidden: ForbiddenCheckResult,
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
) -> str:
    return "\n".join(
        [
            f"Document generation failed after {attempts} attempts.",
            f"Forbidden patterns: {'; '.join(forbidden.forbidden_patterns[:3])}",
            *_context_lines(module_number, sub_module_name, document_name),
        ]
    )
