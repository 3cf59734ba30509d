"""
Requirement Mapper — joins user answers to Primus GFS requirement codes.

Each answered ``requirement_M_SS_RR[x]`` question becomes a
``RequirementMapping`` assigned to one of the 15 document sections by an
ordered keyword cascade.  The module also checks a finished document for
the core answers and the ``### {code} -`` headers those mappings demand.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Optional

from primus_docgen.config import get_settings
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.models.schemas import (
    AnswerPresenceResult,
    AnswerValue,
    QuestionItem,
    RequirementMapping,
)
from primus_docgen.utils.codes import code_sort_key

logger = logging.getLogger(__name__)

# Core field ids, enforced first and in this order.
CORE_FIELD_ORDER: list[str] = [
    "company_name",
    "facility_name",
    "effective_date",
    "review_date",
    "document_number",
    "document_version",
    "revision_number",
    "approved_by",
    "position",
]

REQUIREMENT_ID_RE = re.compile(r"requirement_(\d+)_(\d+)_(\d+)([a-z]?)", re.IGNORECASE)
SECTION_15_RE = re.compile(r"15\.\s*REVISION HISTORY[\s\S]*$", re.IGNORECASE)

# Ordered: the first rule whose keywords hit wins.
_SECTION_RULES: list[tuple[int, tuple[str, ...]]] = [
    (9, ("monitor", "frequency", "inspection", "check", "observe")),
    (13, ("record", "retention", "document control", "filing", "archive")),
    (10, ("verify", "validation", "test", "confirm", "audit")),
    (11, ("corrective", "preventive", "capa", "non-conformance", "deviation")),
    (7, ("hazard", "risk", "analysis", "assess")),
    (5, ("role", "responsibility", "responsible", "accountable")),
    (12, ("traceability", "recall", "lot", "batch")),
]
DEFAULT_SECTION = 8


def extract_requirement_code(question_id: str) -> Optional[str]:
    """
    ``requirement_1_01_01`` -> ``1.01.01``; ``requirement_2_03_04b`` -> ``2.03.04b``.
    Returns None for ids that are not requirement questions.
    """
    match = REQUIREMENT_ID_RE.search(question_id)
    if not match:
        return None
    major, minor, sub, suffix = match.groups()
    return f"{major}.{minor.zfill(2)}.{sub.zfill(2)}{suffix.lower()}"


def determine_target_section(requirement_text: str) -> int:
    """Assign a requirement to a section (1-15); policy statements win over everything else."""
    text = requirement_text.lower()

    if "policy" in text or "purpose" in text or "objective" in text:
        return 2

    for section, keywords in _SECTION_RULES:
        if any(kw in text for kw in keywords):
            return section

    return DEFAULT_SECTION


def format_answer_for_display(answer: Any) -> str:
    """Deterministic rendering of an answer value inside a document."""
    if isinstance(answer, bool):
        return "Yes" if answer else "No"
    if isinstance(answer, datetime):
        return answer.date().isoformat()
    if isinstance(answer, date):
        return answer.isoformat()
    if isinstance(answer, (int, float)):
        return str(answer)
    if answer is None:
        return "To be determined"
    return str(answer)


def map_answers_to_requirements(
    answers: dict[str, AnswerValue],
    questions: list[QuestionItem],
    module_number: str,
    document_name: Optional[str] = None,
    sub_module_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> list[RequirementMapping]:
    """
    Build one mapping per answered requirement question, sorted by code.

    Requirement text comes from the resolved submodule spec; when the spec
    cannot be resolved the question wording is used instead.
    """
    loader = loader or get_framework_loader()
    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)
    if spec is None:
        logger.warning(
            f"[MAPPING] No submodule spec for module {module_number}; using question text as requirement text"
        )
    requirements_by_code = {r.code: r for r in spec.requirements} if spec else {}

    mappings: list[RequirementMapping] = []
    for question in questions:
        if question.id in CORE_FIELD_ORDER:
            continue
        code = extract_requirement_code(question.id)
        if code is None:
            continue
        if question.id not in answers:
            logger.warning(f"[MAPPING] No answer provided for {question.id} ({code})")
            continue

        requirement = requirements_by_code.get(code)
        requirement_text = (
            (requirement.text or requirement.question) if requirement else None
        ) or question.question

        mappings.append(
            RequirementMapping(
                code=code,
                question_id=question.id,
                answer=answers[question.id],
                question=question.question,
                requirement_text=requirement_text,
                section_number=determine_target_section(requirement_text),
            )
        )

    mappings.sort(key=lambda m: code_sort_key(m.code))
    logger.info(f"[MAPPING] Generated {len(mappings)} requirement mappings")
    return mappings


def _header_pattern(code: str) -> re.Pattern[str]:
    return re.compile(rf"###\s+{re.escape(code)}\s+-", re.IGNORECASE)


def validate_answers_present(
    document: str,
    answers: dict[str, AnswerValue],
    questions: list[QuestionItem],
    core_fields_only: bool = False,
) -> AnswerPresenceResult:
    """
    Check that every provided core answer and every requirement header made it
    into the document.

    ``approved_by`` must appear inside Section 15 itself; other core fields may
    appear anywhere.  A header whose answer is not within the proximity window
    still counts as found but is listed in ``answers_not_near_header``.
    """
    result = AnswerPresenceResult()
    doc_lower = document.lower()
    proximity = get_settings().answer_proximity_chars

    for field_id in CORE_FIELD_ORDER:
        if field_id not in answers:
            continue
        value = format_answer_for_display(answers[field_id]).lower()

        if field_id == "approved_by":
            section_15 = SECTION_15_RE.search(document)
            if section_15 and value in section_15.group(0).lower():
                result.found.append(field_id)
            else:
                where = "Section 15" if section_15 else "document (Section 15 not found)"
                logger.warning(f"[VALIDATION] approved_by '{value}' not found in {where}")
                result.missing.append(field_id)
        elif value in doc_lower:
            result.found.append(field_id)
        else:
            result.missing.append(field_id)

    if core_fields_only:
        return result

    for question in questions:
        if question.id in CORE_FIELD_ORDER or question.id not in answers:
            continue
        code = extract_requirement_code(question.id)
        if code is None:
            continue

        if _header_pattern(code).search(document) is None:
            result.missing_requirement_headers.append(code)
            continue

        result.found_requirement_headers.append(code)
        if not answer_near_header(document, code, answers[question.id], proximity):
            value = format_answer_for_display(answers[question.id])
            logger.warning(f"[VALIDATION] Header found for {code} but answer '{value}' not nearby")
            result.answers_not_near_header.append(code)

    return result


def answer_near_header(document: str, code: str, answer: AnswerValue, window: int | None = None) -> bool:
    """True when the formatted answer appears within ``window`` chars of the code's header."""
    window = window or get_settings().answer_proximity_chars
    match = _header_pattern(code).search(document)
    if match is None:
        return False
    text = document[match.start(): match.start() + window].lower()
    return format_answer_for_display(answer).lower() in text
