"""
Compliance Engine — crosswalk generation and micro-rule linting over a
finished document.

Crosswalk: every requirement of the resolved submodule (or, failing that,
the module checklist) is keyword-matched against the document and marked
FULFILLED or GAP.  Lint: mandatory micro-rule phrasing missing from the
document can be inserted into its target section, never after the
signature block.

Usage:
    from primus_docgen.compliance.engine import generate_compliance_summary
    summary = generate_compliance_summary(document, "5", relevant_categories=["pest"])
    print(summary.overall_score)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.models.enums import CrosswalkStatus
from primus_docgen.models.schemas import (
    ChecklistRequirement,
    ComplianceLintIssue,
    ComplianceLintReport,
    ComplianceSummary,
    CrosswalkEntry,
    CrosswalkReport,
    StructureCheck,
)
from primus_docgen.validation.vocabulary import get_vocabulary_store

logger = logging.getLogger(__name__)

GAP_MANDATORY = "GAP: Mandatory requirement not addressed. Must be implemented within 30 days."
GAP_OPTIONAL = "GAP: Optional requirement not addressed. Consider implementation for enhanced compliance."

DEFAULT_INSERT_SECTION = "8. Procedures"
CATEGORY_SECTIONS = {
    "pest": "8. Procedures",
    "chemical": "8. Procedures",
    "document_control": "8. Procedures",
    "glass_brittle_plastic": "8. Procedures",
    "haccp": "8. Procedures",
    "traceability": "12. Traceability & Recall Elements",
    "allergen": "8. Procedures",
}

STRUCTURE_KEY_SECTIONS = [
    "Title & Document Control",
    "Purpose / Objective",
    "Scope",
    "Procedures",
    "Monitoring Plan",
    "Verification & Validation",
    "Corrective & Preventive Action",
    "Traceability",
    "Record Retention",
    "Compliance Crosswalk",
    "Revision History",
]

PLACEHOLDER_RE = re.compile(r"\{\{[^}]+\}\}|\[FILL\]|\[TBD\]|\[TODO\]", re.IGNORECASE)
_SECTION_LINE_RE = re.compile(r"^\s*(?:#+\s*)?\d+\.\s*(.+)")
_SEPARATOR_RE = re.compile(r"^={10,}")
_SIGNATURE_LINE_RE = re.compile(r"Approved\s+By:|Prepared\s+By:|Reviewed\s+By:", re.IGNORECASE)
_SIGNATURE_ZONE_RE = re.compile(r"15\.\s*Revision\s+History|Approved\s+By:", re.IGNORECASE)


# ── Crosswalk ────────────────────────────────────────────

def keyword_threshold(keyword_count: int) -> int:
    """One hit for one or two keywords, two hits for larger sets."""
    return max(1, 2 if keyword_count > 2 else 1)


def _resolve_requirements(
    module_number: str,
    document_name: Optional[str],
    sub_module_name: Optional[str],
    loader: FrameworkLoader,
) -> tuple[list[ChecklistRequirement], str]:
    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)
    if spec and spec.requirements:
        logger.info(f"[CROSSWALK] Using submodule spec: {spec.code} - {spec.title}")
        requirements = [
            ChecklistRequirement(
                code=req.code,
                description=req.description or req.code,
                mandatory=req.required is not False,
                keywords=req.keywords,
            )
            for req in spec.requirements
        ]
        return requirements, spec.title

    logger.info(f"[CROSSWALK] No submodule spec matched; using module {module_number} checklist")
    checklist = loader.load_module_checklist(module_number)
    return loader.get_all_requirements(module_number), checklist.module_name


def _section_for_keyword(lines: list[str], keyword: str) -> Optional[str]:
    current: Optional[str] = None
    for line in lines:
        match = _SECTION_LINE_RE.match(line)
        if match:
            current = match.group(1).strip()
        if keyword in line.lower() and current:
            return current
    return None


def _evidence_text(lines: list[str], keyword: str) -> Optional[str]:
    for i, line in enumerate(lines):
        if keyword in line.lower():
            parts = [line.strip()]
            if i + 1 < len(lines) and lines[i + 1].strip():
                parts.append(lines[i + 1].strip())
            evidence = " ".join(parts)
            return evidence[:200] + ("..." if len(evidence) > 200 else "")
    return None


def find_requirement_in_document(
    requirement: ChecklistRequirement, doc_lower: str, lines: list[str]
) -> CrosswalkEntry:
    matched: list[str] = []
    sections: list[str] = []
    for keyword in requirement.keywords:
        kw = keyword.lower()
        if kw in doc_lower:
            matched.append(keyword)
            section = _section_for_keyword(lines, kw)
            if section and section not in sections:
                sections.append(section)

    if len(matched) >= keyword_threshold(len(requirement.keywords)):
        evidence = _evidence_text(lines, matched[0].lower())
        return CrosswalkEntry(
            requirement_code=requirement.code,
            requirement_description=requirement.description,
            mandatory=requirement.mandatory,
            document_section=", ".join(sections) or "Multiple sections",
            evidence=evidence or f"Keywords found: {', '.join(matched)}",
            status=CrosswalkStatus.FULFILLED,
            matched_keywords=matched,
        )

    return CrosswalkEntry(
        requirement_code=requirement.code,
        requirement_description=requirement.description,
        mandatory=requirement.mandatory,
        document_section=None,
        evidence=GAP_MANDATORY if requirement.mandatory else GAP_OPTIONAL,
        status=CrosswalkStatus.GAP,
        matched_keywords=matched,
    )


def generate_crosswalk(
    document: str,
    module_number: str,
    document_name: Optional[str] = None,
    sub_module_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> CrosswalkReport:
    loader = loader or get_framework_loader()
    requirements, module_name = _resolve_requirements(module_number, document_name, sub_module_name, loader)

    doc_lower = document.lower()
    lines = document.split("\n")
    entries = [find_requirement_in_document(req, doc_lower, lines) for req in requirements]
    fulfilled = sum(1 for e in entries if e.status == CrosswalkStatus.FULFILLED)

    logger.info(f"[CROSSWALK] {fulfilled}/{len(entries)} requirements fulfilled for module {module_number}")
    return CrosswalkReport(
        module_number=module_number,
        module_name=module_name,
        generated_date=datetime.now(timezone.utc).isoformat(),
        total_requirements=len(entries),
        fulfilled_count=fulfilled,
        gap_count=len(entries) - fulfilled,
        entries=entries,
    )


def format_crosswalk_table(crosswalk: CrosswalkReport) -> str:
    rows = [f"Primus Code | Requirement | Document Section | Evidence\n{'=' * 120}"]
    for entry in crosswalk.entries:
        section = entry.document_section or "GAP"
        evidence = entry.evidence.replace("\n", " ")[:80]
        rows.append(f"{entry.requirement_code} | {entry.requirement_description[:50]}... | {section} | {evidence}")
    return "\n".join(rows)


# ── Lint ─────────────────────────────────────────────────

def extract_key_phrases(text: str) -> list[str]:
    """Quoted phrases if any, else the first five words of up to three clauses."""
    quoted = re.findall(r'"([^"]+)"', text)
    if quoted:
        return quoted

    phrases = []
    for sentence in re.split(r"[.;]", text):
        words = sentence.split()
        if len(words) >= 3:
            phrases.append(" ".join(words[:5]))
    return phrases[:3]


def rule_present(rule_text: str, doc_lower: str) -> bool:
    """Present when at least half of the rule's key phrases appear."""
    phrases = extract_key_phrases(rule_text)
    threshold = -(-len(phrases) // 2)
    matched = sum(1 for p in phrases if p.lower() in doc_lower)
    return matched >= threshold


def _section_header_index(lines: list[str], section: str) -> tuple[int, int]:
    """(line index, section number) of the header for e.g. ``"8. Procedures"``; (-1, n) if absent."""
    number, _, title = section.partition(". ")
    header = re.compile(rf"^\s*(?:#+\s*)?{re.escape(number)}\.\s+{re.escape(title)}", re.IGNORECASE)
    for i, line in enumerate(lines):
        if header.match(line):
            return i, int(number)
    return -1, int(number)


def _is_next_section_header(line: str, after: int) -> bool:
    for section in get_vocabulary_store().mandatory_sections:
        if section.number <= after:
            continue
        for title in section.all_titles:
            if re.match(rf"^\s*(?:#+\s*)?{section.number}\.\s+{re.escape(title)}", line, re.IGNORECASE):
                return True
    return False


def insert_after_section(document: str, section: str, insertion_text: str) -> str:
    """
    Insert ``insertion_text`` at the end of ``section``'s body.

    Returns the document unchanged when the section is missing, when the
    section body runs into a signature line, or when the insertion point is
    within 500 characters of Section 15 or the approval signature.
    """
    lines = document.split("\n")
    header_index, number = _section_header_index(lines, section)
    if header_index == -1:
        logger.warning(f'[LINT] Section "{section}" not found. Skipping insertion.')
        return document
    if number >= 15:
        logger.warning(f'[LINT] Refusing to insert into "{section}" (signature section)')
        return document

    index = header_index + 1
    if index < len(lines) and _SEPARATOR_RE.match(lines[index]):
        index += 1
    while index < len(lines):
        line = lines[index]
        if _is_next_section_header(line, number) or _SEPARATOR_RE.match(line):
            break
        if _SIGNATURE_LINE_RE.search(line):
            logger.warning("[LINT] Insertion point runs into signatures. Skipping insertion.")
            return document
        index += 1

    remaining = "\n".join(lines[index:])
    if _SIGNATURE_ZONE_RE.search(remaining[:500]):
        logger.warning("[LINT] Insertion point too close to signatures. Skipping insertion.")
        return document

    while index > header_index + 1 and not lines[index - 1].strip():
        index -= 1
    lines.insert(index, insertion_text)
    return "\n".join(lines)


def _insertion_text(issues: list[ComplianceLintIssue]) -> str:
    # Plain bullets, no category headers or annotations
    return "".join(f"\n- {issue.rule_text}" for issue in issues)


def auto_correct_document(document: str, issues: list[ComplianceLintIssue]) -> str:
    by_section: dict[str, list[ComplianceLintIssue]] = {}
    for issue in issues:
        by_section.setdefault(issue.insert_after_section or DEFAULT_INSERT_SECTION, []).append(issue)

    corrected = document
    for section, section_issues in by_section.items():
        corrected = insert_after_section(corrected, section, _insertion_text(section_issues))
    return corrected


def lint_compliance(
    document: str,
    relevant_categories: list[str],
    auto_correct: bool = False,
    loader: FrameworkLoader | None = None,
) -> ComplianceLintReport:
    """Check only the given micro-rule categories; optionally insert what is missing."""
    loader = loader or get_framework_loader()
    doc_lower = document.lower()
    relevant = loader.get_relevant_micro_rules(relevant_categories)

    issues: list[ComplianceLintIssue] = []
    for category, micro_rules in relevant.items():
        for rule_id, rule_text in micro_rules.rules.items():
            if not rule_present(rule_text, doc_lower):
                issues.append(
                    ComplianceLintIssue(
                        rule_id=rule_id,
                        rule_text=rule_text,
                        category=category,
                        found=False,
                        suggested_insertion=rule_text,
                        insert_after_section=CATEGORY_SECTIONS.get(category, DEFAULT_INSERT_SECTION),
                    )
                )

    report = ComplianceLintReport(
        total_rules_checked=sum(len(m.rules) for m in relevant.values()),
        missing_rules_count=len(issues),
        issues=issues,
    )
    if auto_correct and issues:
        report.corrected_document = auto_correct_document(document, issues)
    logger.info(
        f"[LINT] Checked {report.total_rules_checked} rules across {list(relevant)}; "
        f"{report.missing_rules_count} missing"
    )
    return report


# ── Structure & placeholders ─────────────────────────────

def validate_mandatory_structure(document: str) -> StructureCheck:
    doc_lower = document.lower()
    missing = [s for s in STRUCTURE_KEY_SECTIONS if s.lower() not in doc_lower]
    return StructureCheck(valid=not missing, missing_sections=missing)


def count_placeholders(document: str) -> int:
    return len(PLACEHOLDER_RE.findall(document))


# ── Summary ──────────────────────────────────────────────

def _recommendations(
    crosswalk: CrosswalkReport, lint: ComplianceLintReport, structure: StructureCheck, placeholders: int
) -> list[str]:
    recommendations = []
    mandatory_gaps = [
        e.requirement_code for e in crosswalk.entries if e.status == CrosswalkStatus.GAP and e.mandatory
    ]
    if mandatory_gaps:
        recommendations.append(f"Address mandatory requirement gaps: {', '.join(mandatory_gaps)}")
    if lint.missing_rules_count:
        recommendations.append(
            f"Add missing micro-rule content: {', '.join(i.rule_id for i in lint.issues)}"
        )
    if structure.missing_sections:
        recommendations.append(f"Add missing sections: {', '.join(structure.missing_sections)}")
    if placeholders:
        recommendations.append(f"Replace {placeholders} remaining placeholder(s) with actual values")
    return recommendations


def generate_compliance_summary(
    document: str,
    module_number: str,
    sub_module_name: Optional[str] = None,
    relevant_categories: Optional[list[str]] = None,
    document_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> ComplianceSummary:
    """
    Score = crosswalk fulfilment (40) + lint cleanliness (30)
    + structure (20) + placeholder absence (10), rounded to 0-100.
    """
    loader = loader or get_framework_loader()
    crosswalk = generate_crosswalk(document, module_number, document_name, sub_module_name, loader=loader)
    lint = lint_compliance(document, relevant_categories or [], auto_correct=False, loader=loader)
    structure = validate_mandatory_structure(document)
    placeholders = count_placeholders(document)

    crosswalk_score = (
        crosswalk.fulfilled_count / crosswalk.total_requirements * 40 if crosswalk.total_requirements else 0
    )
    lint_score = 30 if lint.missing_rules_count == 0 else max(0, 30 - lint.missing_rules_count * 2)
    structure_score = 20 if structure.valid else max(0, 20 - len(structure.missing_sections) * 5)
    placeholder_score = 10 if placeholders == 0 else max(0, 10 - placeholders)

    return ComplianceSummary(
        crosswalk=crosswalk,
        lint=lint,
        structure=structure,
        placeholders=placeholders,
        overall_score=round(crosswalk_score + lint_score + structure_score + placeholder_score),
        recommendations=_recommendations(crosswalk, lint, structure, placeholders),
    )
