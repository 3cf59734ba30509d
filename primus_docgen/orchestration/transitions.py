"""
Retry policy and routing functions for the generation graph.

Everything here is pure: ``process_attempt`` turns one raw model output
into an ``AttemptReport``, ``decide_attempt`` turns a report into an
``AttemptResult`` (ACCEPT / RETRY with feedback / FAIL with reason), and
``next_prompt`` rebuilds the prompt for the following attempt.  The
router functions read the state dict and name the next node.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from primus_docgen.compliance.engine import lint_compliance
from primus_docgen.config import get_settings
from primus_docgen.framework.loader import FrameworkLoader
from primus_docgen.generation.feedback import (
    build_forbidden_failure,
    build_forbidden_feedback,
    build_missing_items_failure,
    build_missing_items_feedback,
    build_section_failure,
    build_section_feedback,
)
from primus_docgen.generation.requirements import validate_answers_present
from primus_docgen.models.enums import AttemptOutcome, FailureReason
from primus_docgen.models.schemas import (
    AnswerValue,
    AttemptReport,
    AttemptResult,
    QuestionItem,
    RequirementMapping,
)
from primus_docgen.validation.output_validator import (
    check_forbidden_patterns_only,
    count_sections,
    count_words,
    cutoff_after_signatures,
    has_post_signature_content,
    sanitize_output,
    strip_compliance_annotations,
    validate_llm_output,
)
from primus_docgen.validation.quality import validate_procedural_quality

logger = logging.getLogger(__name__)

FEEDBACK_MARKER = "\n\n" + "=" * 80 + "\nCORRECTIONS REQUIRED FROM PREVIOUS ATTEMPT:\n" + "=" * 80


# ── Attempt processing ───────────────────────────────────

def clean_document(raw_output: str, micro_categories: list[str], loader: FrameworkLoader | None = None) -> str:
    """Sanitize, cut after signatures, lint and strip annotations."""
    document = cutoff_after_signatures(sanitize_output(raw_output))

    if micro_categories:
        lint = lint_compliance(document, micro_categories, auto_correct=True, loader=loader)
        if lint.corrected_document:
            logger.info(f"[LINT] Inserted {lint.missing_rules_count} missing micro-rule(s)")
            document = lint.corrected_document

    document = cutoff_after_signatures(strip_compliance_annotations(document))
    if has_post_signature_content(document):
        document = cutoff_after_signatures(document)
        if has_post_signature_content(document):
            logger.warning("[CUTOFF] Post-signature content remains after truncation")
    return document


def process_attempt(
    attempt: int,
    raw_output: str,
    answers: dict[str, AnswerValue],
    questions: list[QuestionItem],
    micro_categories: list[str],
    loader: FrameworkLoader | None = None,
) -> AttemptReport:
    """
    Run the per-attempt pipeline on one raw output.

    A meta-commentary hit stops the pipeline immediately: the report then
    carries only the forbidden-pattern result and the raw text.
    """
    forbidden = check_forbidden_patterns_only(raw_output)
    if forbidden.has_forbidden_patterns:
        return AttemptReport(attempt=attempt, document=raw_output, forbidden=forbidden)

    document = clean_document(raw_output, micro_categories, loader=loader)
    presence = validate_answers_present(document, answers, questions)

    validation = validate_llm_output(document)
    if not validation.valid:
        logger.warning(
            f"[VALIDATOR] Attempt {attempt}: {len(validation.errors)} validation issue(s) (non-blocking)"
        )

    quality = validate_procedural_quality(document)
    if quality.score < 80:
        logger.warning(f"[QUALITY] Procedural quality score: {quality.score}/100 | {quality.warnings}")
    else:
        logger.info(f"[QUALITY] Procedural quality score: {quality.score}/100")

    return AttemptReport(
        attempt=attempt,
        document=document,
        forbidden=forbidden,
        answers=presence,
        section_count=count_sections(document),
        word_count=count_words(document),
        validation=validation,
        quality=quality,
    )


# ── Decision ─────────────────────────────────────────────

def decide_attempt(
    report: AttemptReport,
    max_attempts: int,
    answers: dict[str, AnswerValue],
    mappings: list[RequirementMapping],
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
) -> AttemptResult:
    """
    Classify one attempt.  Checks run in order: meta-commentary, missing
    answers or headers, then section and word counts.  A rejected final
    attempt becomes FAIL with a message naming every missing item.
    """
    settings = get_settings()
    required = settings.required_section_count
    min_words = settings.min_word_count
    final = report.attempt >= max_attempts
    context = dict(module_number=module_number, sub_module_name=sub_module_name, document_name=document_name)

    if report.forbidden.has_forbidden_patterns:
        reason = FailureReason.FORBIDDEN_PATTERN
        feedback = build_forbidden_feedback(report.forbidden)
        message = build_forbidden_failure(report.attempt, report.forbidden, **context)
        details = {"forbidden_patterns": report.forbidden.forbidden_patterns}
    elif report.answers and (report.answers.missing or report.answers.missing_requirement_headers):
        reason = FailureReason.MISSING_ANSWERS
        feedback = build_missing_items_feedback(report.answers, answers, mappings)
        message = build_missing_items_failure(report.attempt, report.answers, **context)
        details = {
            "missing_core_answers": report.answers.missing,
            "missing_requirement_headers": report.answers.missing_requirement_headers,
        }
    elif report.section_count < required or report.word_count < min_words:
        reason = FailureReason.INCOMPLETE_SECTIONS
        feedback = build_section_feedback(report.section_count, report.word_count, required, min_words)
        message = build_section_failure(
            report.attempt, report.section_count, report.word_count, required=required, min_words=min_words, **context
        )
        details = {"section_count": report.section_count, "word_count": report.word_count}
    else:
        return AttemptResult(outcome=AttemptOutcome.ACCEPT, message=f"Accepted on attempt {report.attempt}")

    outcome = AttemptOutcome.FAIL if final else AttemptOutcome.RETRY
    logger.warning(f"[GRAPH] Attempt {report.attempt}/{max_attempts} rejected ({reason.value}) -> {outcome.value}")
    return AttemptResult(
        outcome=outcome,
        reason=reason,
        feedback=feedback,
        message=message if final else f"Attempt {report.attempt} rejected: {reason.value}",
        details=details,
    )


def next_prompt(prev_prompt: str, feedback: str) -> str:
    """The base prompt plus the latest feedback; earlier feedback is dropped."""
    base = prev_prompt.split(FEEDBACK_MARKER, 1)[0]
    if not feedback.strip():
        return base
    return f"{base}{FEEDBACK_MARKER}\n{feedback.strip()}\n"


# ── Routers ──────────────────────────────────────────────

def route_after_evaluate(state: dict[str, Any]) -> str:
    """
    RETRY  → revise_prompt (then generate again).
    FAIL   → fail.
    ACCEPT → verify when two-pass mode is on, otherwise finalize.
    """
    result = state.get("last_result") or {}
    outcome = result.get("outcome") if isinstance(result, dict) else result.outcome

    if outcome == AttemptOutcome.RETRY:
        return "revise_prompt"
    if outcome == AttemptOutcome.FAIL:
        return "fail"
    if state.get("two_pass"):
        return "verify"
    return "finalize"
