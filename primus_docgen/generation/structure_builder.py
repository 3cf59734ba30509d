"""
Deterministic 15-section document skeleton built from the specifications.

Used as the template text when no bundled template matches a document, so
generation never depends on an external template file.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from primus_docgen.config import get_settings
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.generation.prompt_builder import prompt_requirements
from primus_docgen.generation.requirements import format_answer_for_display
from primus_docgen.models.schemas import AnswerValue, MicroRules, ModuleSpec, SectionTemplate, SubmoduleSpec

logger = logging.getLogger(__name__)

RULE = "=" * 80


class StructureSection(BaseModel):
    template: SectionTemplate
    required_content: list[str] = []


# ── Section content builders ─────────────────────────────

def _title_content(spec: Optional[SubmoduleSpec], answers: dict[str, AnswerValue]) -> list[str]:
    content: list[str] = []
    if spec:
        content += [f"Document Title: {spec.title}", f"Document Code: {spec.code}"]
    labels = [
        ("document_number", "Document Number"),
        ("document_version", "Version"),
        ("effective_date", "Effective Date"),
        ("approved_by", "Approved By"),
    ]
    for field, label in labels:
        if answers.get(field):
            content.append(f"{label}: {format_answer_for_display(answers[field])}")
    return content


def _purpose_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec:
        return []
    return [f"Purpose: {spec.description}", f"Compliance Standard: {get_settings().compliance_standard}"]


def _scope_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec or not spec.applies_to:
        return []
    return [f"Applies To: {', '.join(spec.applies_to)}"]


def _hazard_content(spec: Optional[SubmoduleSpec], module_spec: ModuleSpec) -> list[str]:
    content = [
        f"Hazard types relevant to {module_spec.module_name}:",
        "- Biological hazards (if applicable)",
        "- Chemical hazards (if applicable)",
        "- Physical hazards (if applicable)",
    ]
    if spec:
        content.append(f"Specific risks for {spec.title} must be analyzed")
    return content


def _procedures_content(spec: Optional[SubmoduleSpec], micro_rules: dict[str, MicroRules]) -> list[str]:
    content: list[str] = []
    if spec:
        content.append(f"Core Procedures for {spec.title}:")
        for req in prompt_requirements(spec):
            content.append(f"[{req.code}] {req.description}")
            content.extend(f"  → {statement}" for statement in req.mandatory_statements)

    if micro_rules:
        content += ["", "[Additional Mandatory Requirements:]"]
        for category, rules in micro_rules.items():
            content.extend(f"[{category}/{rule_id}] {text}" for rule_id, text in rules.rules.items())
    return content


def _monitoring_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec:
        return []
    return [
        f"[{r.code}] Monitoring: {r.monitoring_expectations}"
        for r in prompt_requirements(spec)
        if r.monitoring_expectations
    ]


def _verification_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec:
        return []
    return [
        f"[{r.code}] Verification: {r.verification_expectations}"
        for r in prompt_requirements(spec)
        if r.verification_expectations
    ]


def _capa_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec or not spec.capa_inject:
        return []
    return ["CAPA Triggers and Protocols:"] + [f"- {item}" for item in spec.capa_inject]


def _traceability_content(spec: Optional[SubmoduleSpec]) -> list[str]:
    if not spec or not spec.traceability_inject:
        return []
    return ["Traceability Requirements:"] + [f"- {item}" for item in spec.traceability_inject]


def build_structured_sections(
    module_spec: ModuleSpec,
    spec: Optional[SubmoduleSpec],
    micro_rules: dict[str, MicroRules],
    answers: dict[str, AnswerValue],
) -> list[StructureSection]:
    builders = {
        1: lambda: _title_content(spec, answers),
        2: lambda: _purpose_content(spec),
        3: lambda: _scope_content(spec),
        7: lambda: _hazard_content(spec, module_spec),
        8: lambda: _procedures_content(spec, micro_rules),
        9: lambda: _monitoring_content(spec),
        10: lambda: _verification_content(spec),
        11: lambda: _capa_content(spec),
        12: lambda: _traceability_content(spec),
    }
    sections = []
    for template in module_spec.document_structure_template.sections:
        build = builders.get(template.number)
        sections.append(StructureSection(template=template, required_content=build() if build else []))
    return sections


def assemble_structure(
    sections: list[StructureSection], module_spec: ModuleSpec, spec: Optional[SubmoduleSpec]
) -> str:
    blocks = [RULE, "PRIMUS GFS v4.0 DOCUMENT STRUCTURE", f"Module: {module_spec.module_name}"]
    if spec:
        blocks.append(f"Submodule: {spec.code} - {spec.title}")
    blocks += [RULE, ""]

    for section in sections:
        t = section.template
        blocks += [
            f"{t.number}. {t.title.upper()}",
            RULE,
            "",
            f"[Content Guidance: {t.content_guidance}]",
            f"[Minimum Paragraphs: {t.min_paragraphs}]",
            "",
        ]
        if section.required_content:
            blocks.append("[REQUIRED CONTENT TO INCLUDE:]")
            blocks.extend(f"- {line}" for line in section.required_content)
            blocks.append("")
        blocks += ["[Generate comprehensive content for this section now]", "", ""]

    return "\n".join(blocks)


def build_deterministic_structure(
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
    answers: Optional[dict[str, AnswerValue]] = None,
    loader: FrameworkLoader | None = None,
) -> str:
    """Full 15-section skeleton with spec-derived content guidance."""
    loader = loader or get_framework_loader()
    logger.info(
        f"[STRUCTURE] Building deterministic structure for Module {module_number}, "
        f"Submodule: {sub_module_name or 'N/A'}"
    )
    module_spec = loader.load_module_spec(module_number)
    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)
    micro_rules = loader.get_relevant_micro_rules(list(spec.micro_inject) if spec else [])

    sections = build_structured_sections(module_spec, spec, micro_rules, answers or {})
    return assemble_structure(sections, module_spec, spec)


def build_requirements_list(
    module_number: str,
    sub_module_name: Optional[str] = None,
    document_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> str:
    """Human-readable list of the submodule's mandatory requirements."""
    loader = loader or get_framework_loader()
    module_spec = loader.load_module_spec(module_number)
    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)

    blocks = [f"MODULE: {module_spec.module_name}", ""]
    if spec:
        blocks += [
            f"SUBMODULE: {spec.code} - {spec.title}",
            f"Description: {spec.description}",
            "",
            "MANDATORY REQUIREMENTS:",
            RULE,
        ]
        for req in prompt_requirements(spec):
            blocks.append(f"\n[{req.code}] {req.description}")
            blocks.append("Mandatory Statements:")
            blocks.extend(f"  - {statement}" for statement in req.mandatory_statements)
            blocks.append(f"Monitoring: {req.monitoring_expectations}")
            blocks.append(f"Verification: {req.verification_expectations}")
    return "\n".join(blocks)
