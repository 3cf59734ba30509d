"""
Output Validator — screens generated SOP text before it is accepted.

Detects meta-commentary and placeholders, checks the 15 mandatory
sections, sanitizes formatting artefacts and truncates anything the
model appended after the final approval signature.

Usage:
    from primus_docgen.validation.output_validator import validate_llm_output
    result = validate_llm_output(document)
    if not result.valid:
        print(format_validation_report(result))
"""

from __future__ import annotations

import logging
import re

from primus_docgen.config import get_settings
from primus_docgen.models.enums import Severity, ValidationErrorType, ValidationWarningType
from primus_docgen.models.schemas import (
    ForbiddenCheckResult,
    ValidationIssue,
    ValidationResult,
    ValidationWarning,
)
from primus_docgen.validation.vocabulary import VocabularyStore, get_vocabulary_store

logger = logging.getLogger(__name__)

SECTION_HEADER_RE = re.compile(r"^\d{1,2}\.\s+[A-Z]", re.MULTILINE)
_APPROVED_BY_RE = re.compile(r"Approved\s+By:", re.IGNORECASE)
_HEADER_LINE_RE = re.compile(r"^(\d+\.|#{1,3})\s+\S")
# top-level section headers only; "### 1.01.01 -" subsections count as content of their parent
_MAIN_HEADER_LINE_RE = re.compile(r"^(\d{1,2}\.|#{1,2})\s+\S")

BLOCKING_SEVERITIES = (Severity.CRITICAL, Severity.HIGH)


# ── Helpers ──────────────────────────────────────────────

def extract_context(text: str, index: int, context_length: int = 100) -> str:
    start = max(0, index - context_length)
    end = min(len(text), index + context_length)
    context = text[start:end]
    if start > 0:
        context = "..." + context
    if end < len(text):
        context = context + "..."
    return context


def get_line_number(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


def count_words(text: str) -> int:
    return len(text.split())


def count_sections(text: str) -> int:
    """Number of lines that look like a numbered section header."""
    return len(SECTION_HEADER_RE.findall(text))


# ── Fast pre-check ───────────────────────────────────────

def check_forbidden_patterns_only(output: str, store: VocabularyStore | None = None) -> ForbiddenCheckResult:
    """
    Scan raw model output for meta-commentary only.

    Runs before sanitization so a hit forces a regeneration instead of a
    silent clean-up.  Every hit contributes its description and a short
    context snippet.
    """
    store = store or get_vocabulary_store()
    result = ForbiddenCheckResult()

    for regex, rule in store.compiled("forbidden_patterns"):
        if not rule.meta_commentary:
            continue
        match = regex.search(output)
        if match:
            result.forbidden_patterns.append(rule.description)
            result.snippets.append(extract_context(output, match.start(), 60))

    result.has_forbidden_patterns = bool(result.forbidden_patterns)
    if result.has_forbidden_patterns:
        logger.warning(f"[VALIDATOR] Meta-commentary detected: {'; '.join(result.forbidden_patterns)}")
    return result


# ── Individual checks ────────────────────────────────────

def detect_forbidden_patterns(output: str, store: VocabularyStore | None = None) -> list[ValidationIssue]:
    store = store or get_vocabulary_store()
    errors: list[ValidationIssue] = []
    for regex, rule in store.compiled("forbidden_patterns"):
        for match in regex.finditer(output):
            errors.append(
                ValidationIssue(
                    type=ValidationErrorType.FORBIDDEN_PATTERN,
                    severity=rule.severity,
                    message=f"Forbidden pattern detected: {rule.description}",
                    context=extract_context(output, match.start()),
                    line_number=get_line_number(output, match.start()),
                )
            )
    return errors


def detect_suspicious_patterns(output: str, store: VocabularyStore | None = None) -> list[ValidationWarning]:
    store = store or get_vocabulary_store()
    warnings: list[ValidationWarning] = []
    for regex, rule in store.compiled("suspicious_patterns"):
        for match in regex.finditer(output):
            warnings.append(
                ValidationWarning(
                    type=ValidationWarningType.SUSPICIOUS_CONTENT,
                    message=f"Suspicious pattern: {rule.description}",
                    context=extract_context(output, match.start(), 50),
                )
            )
    return warnings


def validate_section_structure(output: str, store: VocabularyStore | None = None) -> list[ValidationIssue]:
    """One HIGH error per mandatory section whose numbered title is absent."""
    store = store or get_vocabulary_store()
    lower = output.lower()
    errors: list[ValidationIssue] = []

    for section in store.mandatory_sections:
        found = any(
            re.search(rf"(?<!\d){section.number}\.\s+{re.escape(title.lower())}", lower)
            for title in section.all_titles
        )
        if not found:
            errors.append(
                ValidationIssue(
                    type=ValidationErrorType.MISSING_SECTION,
                    severity=Severity.HIGH,
                    message=f"Mandatory section missing: {section.number}. {section.title}",
                )
            )
    return errors


def detect_incomplete_content(output: str, min_words: int | None = None) -> list[ValidationIssue]:
    min_words = min_words if min_words is not None else get_settings().min_word_count
    errors: list[ValidationIssue] = []

    lines = output.split("\n")
    for i, line in enumerate(lines[:-1]):
        line = line.strip()
        next_line = lines[i + 1].strip()
        if _HEADER_LINE_RE.match(line) and _MAIN_HEADER_LINE_RE.match(next_line):
            errors.append(
                ValidationIssue(
                    type=ValidationErrorType.INCOMPLETE_CONTENT,
                    severity=Severity.HIGH,
                    message=f"Section appears to have no content: {line}",
                    line_number=i + 1,
                )
            )

    word_count = count_words(output)
    if word_count < min_words:
        errors.append(
            ValidationIssue(
                type=ValidationErrorType.INCOMPLETE_CONTENT,
                severity=Severity.CRITICAL,
                message=(
                    f"Document too short ({word_count} words). Audit-ready SOPs require "
                    f"comprehensive content (minimum {min_words} words)."
                ),
            )
        )
    return errors


# ── Clean-up ─────────────────────────────────────────────

def sanitize_output(output: str) -> str:
    """
    Strip formatting artefacts (code fences, HTML tags, strikethrough,
    stray JSON blobs) and normalise blank lines.  Idempotent.
    """
    text = re.sub(r"```\w*\n?", "", output)
    text = re.sub(r"</?[a-z]+>", "", text, flags=re.IGNORECASE)
    text = text.replace("***", "")
    text = re.sub(r"~~(.+?)~~", r"\1", text)
    text = re.sub(r'^\s*\{[^}]*"[^"]*":\s*"[^"]*"[^}]*\}\s*', "", text)
    text = re.sub(r'\s*\{[^}]*"[^"]*":\s*"[^"]*"[^}]*\}\s*\Z', "", text)
    text = re.sub(r"\n{4,}", "\n\n\n", text)
    # exactly one blank line after a section header that already has one
    text = re.sub(r"^(\d{1,2}\.\s+[A-Z][^\n]*)\n{2,}", r"\1\n\n", text, flags=re.MULTILINE)
    return text.strip()


def strip_compliance_annotations(output: str) -> str:
    """Remove compliance annotations that must never reach the final document."""
    text = re.sub(r"\[COMPLIANCE AUTO-CORRECTION:[^\]]*\]", "", output, flags=re.IGNORECASE)
    text = re.sub(r"\n\n[A-Z][A-Z\s]+COMPLIANCE:\s*\n", "\n\n", text)
    text = re.sub(r"^[A-Z][A-Z\s]+COMPLIANCE:\s*\n", "", text, flags=re.MULTILINE)
    text = re.sub(r"\n[A-Z_\s]+REQUIREMENTS:\s*\n", "\n", text)
    text = re.sub(r"^\[.*\]\s*$", "", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def cutoff_after_signatures(output: str, store: VocabularyStore | None = None) -> str:
    """
    Truncate at the end of the last ``Approved By: ... Date: ...`` line when
    compliance summaries or appendices follow it.  Otherwise unchanged.
    """
    store = store or get_vocabulary_store()
    matches = list(store.signature_block.finditer(output))
    if not matches:
        return output

    end = matches[-1].end()
    tail = output[end:]
    for regex, _rule in store.compiled("post_signature_cut_patterns"):
        if regex.search(tail):
            logger.info(f"[CUTOFF] Removed {len(tail)} chars of post-signature content")
            return output[:end].rstrip()
    return output


def has_post_signature_content(output: str, store: VocabularyStore | None = None) -> bool:
    store = store or get_vocabulary_store()
    matches = list(_APPROVED_BY_RE.finditer(output))
    if not matches:
        return False
    tail = output[matches[-1].start():]
    return any(regex.search(tail) for regex, _rule in store.compiled("post_signature_detect_patterns"))


# ── Full validation ──────────────────────────────────────

def validate_llm_output(output: str, store: VocabularyStore | None = None) -> ValidationResult:
    """
    Complete validation pass.  ``valid`` is False when any CRITICAL or HIGH
    error is present; ``sanitized_output`` is only set for valid documents.
    """
    store = store or get_vocabulary_store()
    errors: list[ValidationIssue] = []
    warnings: list[ValidationWarning] = []

    if has_post_signature_content(output, store):
        errors.append(
            ValidationIssue(
                type=ValidationErrorType.FORBIDDEN_PATTERN,
                severity=Severity.CRITICAL,
                message=(
                    "Post-signature content detected (compliance summaries, appendices, "
                    "or notes after final signature)"
                ),
                context='Content found after "Approved By:" signature line',
            )
        )

    errors.extend(detect_forbidden_patterns(output, store))
    warnings.extend(detect_suspicious_patterns(output, store))
    errors.extend(validate_section_structure(output, store))
    errors.extend(detect_incomplete_content(output))

    sanitized = cutoff_after_signatures(sanitize_output(output), store)
    valid = not any(e.severity in BLOCKING_SEVERITIES for e in errors)

    logger.info(
        f"[VALIDATOR] valid={valid} errors={len(errors)} warnings={len(warnings)}"
    )
    return ValidationResult(
        valid=valid,
        errors=errors,
        warnings=warnings,
        sanitized_output=sanitized if valid else None,
    )


def is_valid_output(output: str) -> bool:
    return validate_llm_output(output).valid


def get_critical_errors(result: ValidationResult) -> list[ValidationIssue]:
    return [e for e in result.errors if e.severity in BLOCKING_SEVERITIES]


def format_validation_report(result: ValidationResult) -> str:
    lines = [
        "=" * 80,
        "DOCUMENT VALIDATION REPORT",
        "=" * 80,
        f"Status: {'✅ VALID' if result.valid else '❌ INVALID'}",
        f"Errors: {len(result.errors)}",
        f"Warnings: {len(result.warnings)}",
        "",
    ]

    if result.errors:
        lines += ["ERRORS:", "-" * 80]
        for error in result.errors:
            lines.append(f"[{error.severity.value}] {error.message}")
            if error.context:
                lines.append(f"  Context: {error.context}")
            if error.line_number:
                lines.append(f"  Line: {error.line_number}")
            lines.append("")

    if result.warnings:
        lines += ["WARNINGS:", "-" * 80]
        for warning in result.warnings:
            lines.append(f"[{warning.type.value}] {warning.message}")
            if warning.context:
                lines.append(f"  Context: {warning.context}")
            lines.append("")

    lines.append("=" * 80)
    return "\n".join(lines)
