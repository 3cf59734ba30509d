"""
Procedural-quality scoring for audit readiness.

A soft check: counts concrete procedural signals (form numbers, explicit
frequencies, job titles, acceptance criteria, decision points, record
locations) and deducts points for each signal that is thin.  The score
is logged by the generator and never blocks acceptance.
"""

from __future__ import annotations

import logging
import re

from primus_docgen.models.schemas import ProceduralQualityResult

logger = logging.getLogger(__name__)

# metric -> (regex, minimum count, deduction, warning, suggestion)
_SIGNALS: dict[str, tuple[re.Pattern[str], int, int, str, str]] = {
    "form_numbers": (
        re.compile(r"\b[A-Z]{2,5}-[A-Z]{2,5}-\d{2,3}\b|\bForm\s+[A-Z0-9][\w.-]*\d"),
        3,
        20,
        "Few specific form or document numbers",
        'Reference forms by number, e.g. "Form FSM-TR-01"',
    ),
    "frequencies": (
        re.compile(
            r"\b(daily|weekly|monthly|quarterly|annually|every\s+\w+|within\s+\d+\s+(?:hours?|days?))\b",
            re.IGNORECASE,
        ),
        5,
        20,
        "Few explicit frequencies",
        'State frequencies explicitly, e.g. "Every Monday at 9:00 AM" or "Within 24 hours"',
    ),
    "job_titles": (
        re.compile(r"\b(Manager|Supervisor|Coordinator|Technician|Lead|Director|Officer)\b"),
        5,
        15,
        "Responsible parties are not named by job title",
        'Assign each step to a job title, e.g. "Food Safety Manager"',
    ),
    "acceptance_criteria": (
        re.compile(r"(≥|≤|>=|<=|\d+\s*%|\d+\s*°[FC]|must\s+(?:be|not\s+exceed))", re.IGNORECASE),
        3,
        15,
        "Few measurable acceptance criteria",
        'Add measurable limits, e.g. "Temperature must be ≤40°F"',
    ),
    "decision_points": (
        re.compile(r"\b(if|when)\b[^.\n]{0,80}\b(then|proceed|initiate|notify|escalate)\b", re.IGNORECASE),
        3,
        15,
        "Few decision points",
        'Add decision points, e.g. "If criteria are not met, initiate CAPA per Section 11"',
    ),
    "record_locations": (
        re.compile(r"\b(stored|filed|maintained|kept|archived)\s+(in|on|at)\b", re.IGNORECASE),
        2,
        15,
        "Record storage locations are not stated",
        'Name where records live, e.g. "Filed in QA Office Cabinet 3"',
    ),
}


def validate_procedural_quality(document: str) -> ProceduralQualityResult:
    result = ProceduralQualityResult()

    for metric, (regex, minimum, deduction, warning, suggestion) in _SIGNALS.items():
        count = len(regex.findall(document))
        result.metrics[metric] = count
        if count < minimum:
            result.score -= deduction
            result.warnings.append(f"{warning} ({count} found, expected at least {minimum})")
            result.suggestions.append(suggestion)

    result.score = max(0, result.score)
    logger.debug(f"[QUALITY] score={result.score} metrics={result.metrics}")
    return result
