"""
Spec-driven prompt builder.

Builds the generation prompt entirely from the module / submodule
specifications, the relevant micro-rules and the user's answers.  The
enhanced variant additionally injects an answer placement map and the
mandatory ``### {code} - {title}`` header checklist ahead of the
structure block so every mapped requirement gets its own subsection.
"""

from __future__ import annotations

import json
import logging
import math
from datetime import date
from typing import Optional

from primus_docgen.config import get_settings
from primus_docgen.exceptions import SpecNotFoundError
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.generation.requirements import (
    CORE_FIELD_ORDER,
    format_answer_for_display,
    map_answers_to_requirements,
)
from primus_docgen.models.schemas import (
    AnswerValue,
    MicroRules,
    ModuleSpec,
    QuestionItem,
    RequirementMapping,
    SubmoduleRequirement,
    SubmoduleSpec,
)

logger = logging.getLogger(__name__)

RULE = "=" * 80

# Searched in order; guidance is injected before the first one found.
STRUCTURE_MARKERS = [
    "MANDATORY DOCUMENT STRUCTURE (15 SECTIONS):",
    "DOCUMENT STRUCTURE:",
    "## Document Structure",
    "STRUCTURE:",
    "## Structure",
    "You must generate a document with the following structure",
]

LARGE_SUBMODULE = 15
VERY_LARGE_SUBMODULE = 20

CORE_FIELD_LOCATIONS = {
    "company_name": 'Section 1: "Organization: {value}"',
    "facility_name": 'Section 1: "Facility: {value}"',
    "document_number": 'Section 1: "Document Number: {value}"',
    "document_version": 'Section 1: "Version: {value}"',
    "effective_date": 'Section 1: "Effective Date: {value}"',
    "approved_by": 'Section 15: "Approved By: {value} Date: __________"',
    "review_date": 'Section 15: "Review Date: {value}"',
    "revision_number": 'Section 1: "Revision: {value}"',
    "position": 'Section 15: "Position: {value}"',
}


def prompt_requirements(spec: SubmoduleSpec) -> list[SubmoduleRequirement]:
    """Requirements listed in the prompt: all except those explicitly marked optional."""
    return [r for r in spec.requirements if r.required is not False]


def compute_token_limit(requirement_count: int, cap: int | None = None) -> int:
    """Generation budget grows with the number of requirements, clamped to the provider cap."""
    if requirement_count >= 20:
        limit = 35000
    elif requirement_count >= 15:
        limit = 30000
    elif requirement_count >= 10:
        limit = 28000
    else:
        limit = 25000
    cap = cap if cap is not None else get_settings().llm_max_tokens_cap
    return min(limit, cap)


# ── Base prompt blocks ───────────────────────────────────

def build_system_role() -> str:
    return """You are a deterministic Primus GFS v4.0 document generator for Modules 1–7.
You generate ONE complete audit-ready Standard Operating Procedure (SOP) per submodule.

CRITICAL OUTPUT REQUIREMENTS:
✓ Only the final SOP document text (plain text format)
✓ Complete content for all 15 sections (MANDATORY - no skipping - highest priority)
✓ Actual procedures with step-by-step instructions, not descriptions
✓ Specific values from provided answers
✓ Minimum 2500 words for comprehensive audit-ready content
✓ ALL requirements from the specification integrated naturally

AUDIT-READY PROCEDURAL REQUIREMENTS (CRITICAL):
⚡ Write SPECIFIC step-by-step procedures: "1. The FSM reviews... 2. If deficiency found... 3. Complete Form..."
⚡ Include SPECIFIC forms/documents: "Form FSM-TR-01", "Document #1.01-POL-001", "Checklist QA-AUD-05"
⚡ Use SPECIFIC frequencies: "Every Monday at 9:00 AM", "Within 24 hours of discovery", "Quarterly (Jan, Apr, Jul, Oct)"
⚡ Specify RESPONSIBLE parties: Use job titles consistently ("Food Safety Manager", "QA Supervisor", "Line Supervisor")
⚡ Include ACCEPTANCE criteria: "Training completion rate must be ≥95%", "Temperature must be ≤40°F"
⚡ Add DECISION points: "If X occurs, proceed to Section Y", "When criteria not met, initiate CAPA per Section 11"
⚡ Reference RECORD locations: "Records stored in SharePoint/Quality/Training", "Filed in QA Office Cabinet 3"
⚡ Generate realistic form numbers using pattern: {SECTION}-{TYPE}-{NUMBER} (e.g., "FSM-TR-01", "CAPA-INV-02")

CRITICAL RULE FOR LARGE SUBMODULES (15+ requirements):
⚡ Your PRIMARY goal is completing ALL 15 SECTIONS
⚡ Be thorough but efficient: 2-4 well-developed paragraphs per section
⚡ Do NOT make early sections excessively long at the expense of later sections
⚡ Distribute content evenly - complete coverage is more important than excessive detail
⚡ Section 8 (Procedures) should be comprehensive but concise - 1-2 paragraphs per requirement
⚡ BUDGET YOUR TOKENS: Reserve minimum 10,000 tokens for sections 9-15

YOUR OUTPUT MUST NOT CONTAIN:
✗ Bracketed meta-comments like "[...]", "[continued]", "[fill in]"
✗ Phrases like "COMPLIANCE AUTO-CORRECTION", "missing requirement(s) added"
✗ Conversational phrases like "Would you like me to", "I have generated", "Here is the"
✗ Explanations like "EXPLANATION:", "Note: The SOP should", "This document would"
✗ Template variables like {{variable}}, ${variable}, %VARIABLE%
✗ Placeholders like [TBD], [TODO], [PENDING], [FILL]
✗ First-person voice ("I will", "We can see")
✗ Meta-commentary about how you generated the document
✗ References to templates, LLMs, AI, or generation process
✗ Incomplete sections followed by "..." or "continued as per template"

IMPORTANT: Generate COMPLETE sections with substantial content.
Do NOT abbreviate or skip content. Each section must be fully developed with concrete details."""


def build_document_identification(
    spec: SubmoduleSpec, document_name: Optional[str], answers: dict[str, AnswerValue]
) -> str:
    company = answers.get("company_name") or answers.get("org_name") or "[Organization Name]"
    facility = answers.get("facility_name") or "[Facility Name]"
    number = answers.get("document_number") or f"{spec.code}-001"
    version = answers.get("document_version") or "1.0"
    effective = answers.get("effective_date") or date.today().isoformat()
    standard = get_settings().compliance_standard

    return f"""DOCUMENT IDENTIFICATION:
=================================
✓ DOCUMENT TYPE: Standard Operating Procedure
✓ PRIMUS GFS CODE: {spec.code}
✓ DOCUMENT TITLE: "{spec.title}"
✓ DOCUMENT NAME: "{document_name or spec.title}"
✓ MODULE: {spec.module_name}
✓ ORGANIZATION: {format_answer_for_display(company)}
✓ FACILITY: {format_answer_for_display(facility)}
✓ DOCUMENT NUMBER: {format_answer_for_display(number)}
✓ VERSION: {format_answer_for_display(version)}
✓ EFFECTIVE DATE: {format_answer_for_display(effective)}
✓ COMPLIANCE STANDARD: {standard}

TITLE FORMAT: Use exact title "{spec.title}" - do not modify or abbreviate."""


def _statement_lines(statements: list[str], limit: Optional[int]) -> list[str]:
    shown = statements if limit is None else statements[:limit]
    lines = [f"  • {s}" for s in shown]
    if limit is not None and len(statements) > limit:
        lines.append(f"  • (+{len(statements) - limit} more - implement all)")
    return lines


def build_requirements_section(spec: SubmoduleSpec) -> str:
    """Requirement list; above 15 / 20 requirements only the first 3 / 2 statements are shown."""
    listed = prompt_requirements(spec)
    count = len(listed)
    is_large = count > LARGE_SUBMODULE
    is_very_large = count > VERY_LARGE_SUBMODULE
    limit = 2 if is_very_large else 3 if is_large else None

    blocks = [
        "MANDATORY REQUIREMENTS FROM SPECIFICATION:",
        RULE,
        f"Submodule: {spec.code} - {spec.title}",
        f"Description: {spec.description}",
        "",
        "YOU MUST INTEGRATE ALL REQUIREMENTS INTO THE DOCUMENT:",
        "",
    ]
    for req in listed:
        blocks.append(f"[{req.code}] {req.description}")
        blocks.extend(_statement_lines(req.mandatory_statements, limit))
        blocks.append("")

    if is_very_large:
        blocks += [
            "",
            f"CRITICAL: This submodule has {count} requirements (very large module).",
            "For prompt efficiency, only 2 sample mandatory statements shown per requirement.",
            "You MUST implement ALL mandatory statements for each requirement - not just the 2 samples.",
            "Refer to the requirement text for complete implementation guidance.",
            "",
            "EFFICIENCY REQUIREMENT: To fit all 15 sections:",
            "- Section 8 (Procedures): 1 paragraph per requirement (concise but complete)",
            "- Sections 9-14: 2-3 paragraphs each (focused content)",
            "- Distribute content evenly - DO NOT make Section 8 excessively long",
        ]
    elif is_large:
        blocks += [
            "",
            f"NOTE: This submodule has {count} requirements. For brevity, only key mandatory statements shown above.",
            "You MUST implement ALL mandatory statements for each requirement, not just those listed.",
            "Each requirement has been fully specified - refer to the requirement text for complete "
            "implementation guidance.",
        ]

    blocks += ["", "CRITICAL: Do NOT skip any requirement. Each one must appear with complete, detailed content."]
    return "\n".join(blocks)


def build_structure_template(module_spec: ModuleSpec) -> str:
    blocks = [
        "MANDATORY DOCUMENT STRUCTURE (15 SECTIONS):",
        RULE,
        "ALL 15 SECTIONS MUST BE PRESENT. DO NOT SKIP ANY SECTION.",
        "",
    ]
    for section in module_spec.document_structure_template.sections:
        blocks += [
            f"{section.number}. {section.title.upper()}",
            f"   Required: {'YES (MANDATORY)' if section.required else 'NO'}",
            f"   Minimum Paragraphs: {section.min_paragraphs}",
            f"   Content Guidance: {section.content_guidance}",
            "",
        ]
    return "\n".join(blocks)


def build_content_rules(spec: SubmoduleSpec) -> str:
    paragraphs = max(3, math.ceil(2500 / 15 / 50))
    capa = f"\n   - MUST include: {'; '.join(spec.capa_inject)}" if spec.capa_inject else ""
    traceability = (
        f"   - MUST include: {'; '.join(spec.traceability_inject)}"
        if spec.traceability_inject
        else "   - Document all record linkages and audit trails"
    )
    return f"""CONTENT GENERATION RULES:
=================================
1. REQUIREMENTS INTEGRATION:
   - Every requirement listed above MUST appear in the document
   - Integrate requirements into the appropriate sections (see section guidance below)
   - Preserve exact wording of mandatory statements
   - Use provided answers to make requirements organization-specific

2. COMPLETENESS:
   - Generate minimum 2500 words for comprehensive audit-ready content
   - Each section must have substantial content ({paragraphs} paragraphs minimum per section)
   - No placeholders, no "[TBD]", no "[FILL]"
   - Replace all variables with actual values from answers

3. BOOLEAN ANSWERS:
   - If a boolean answer is false: create a GAP STATEMENT + corrective action with timeline (<= 90 days) + interim controls
   - Document gaps transparently but professionally

4. SPECIFICITY:
   - Frequencies: use explicit units (e.g., "every 4 hours", "daily", "weekly")
   - Critical limits: numeric or clearly measurable statements
   - Roles: use specific position titles from answers or generic roles (e.g., "Food Safety Manager")

5. CAPA PROTOCOL:
   - Include trigger → containment → root cause → corrective → preventive → verification steps{capa}

6. TRACEABILITY:
{traceability}

7. CROSSWALK TABLE (Section 14):
   - List each requirement code with section number where fulfilled and brief evidence
   - Format: Primus Code | Requirement | Document Section | Evidence

8. NO HALLUCINATIONS:
   - Only use content from: specifications above + answers provided + standard SOP structure
   - No speculative claims, no invented data, no generic "best practices" not in spec"""


def build_micro_rules_section(micro_rules: dict[str, MicroRules], categories: list[str]) -> str:
    blocks = [
        "ADDITIONAL MANDATORY COMPLIANCE REQUIREMENTS:",
        RULE,
        f"You MUST integrate ALL requirements from these micro-rule categories: {', '.join(categories)}",
        "DO NOT include requirements from any other categories.",
        "",
        "Integrate these requirements naturally into Section 8 (Procedures), Section 9 (Monitoring), "
        "or Section 11 (CAPA).",
        "DO NOT announce their inclusion. DO NOT add bracketed notes. Write them as if they were always "
        "part of the SOP.",
        "",
    ]
    for category, rules in micro_rules.items():
        blocks.append(f"{category.upper().replace('_', ' ')} REQUIREMENTS:")
        blocks.append("-" * 80)
        blocks.extend(f"• {text}" for text in rules.rules.values())
        blocks.append("")
    blocks.append("CRITICAL: Integrate these requirements seamlessly into appropriate sections.")
    blocks.append("They must appear as natural SOP content, not as separately labeled additions.")
    return "\n".join(blocks)


def build_section_guidance(spec: SubmoduleSpec) -> str:
    listed = prompt_requirements(spec)
    count = len(listed)
    is_large = count > LARGE_SUBMODULE
    is_very_large = count > VERY_LARGE_SUBMODULE

    blocks = [
        "SECTION-SPECIFIC GUIDANCE:",
        RULE,
        "",
        "⚡ CRITICAL: YOU MUST COMPLETE ALL 15 SECTIONS. Balance thoroughness with conciseness.",
        "⚡ VERY LARGE MODULE: Prioritize efficiency - 1-2 paragraphs per requirement in Section 8."
        if is_very_large
        else "For large submodules, each section should be 2-4 well-developed paragraphs.",
        "⚡ Focus on completing ALL sections rather than making early sections excessively long.",
        "",
    ]

    if is_very_large:
        blocks += [
            f"EFFICIENCY MODE: This submodule has {count} requirements (very large).",
            "To complete ALL 15 sections within token limit:",
            "1. Section 8 (Procedures): 1 concise paragraph per requirement (~600-800 words total)",
            "2. Sections 9-14: 2-3 focused paragraphs each (~150-250 words per section)",
            "3. NO excessive detail - comprehensive coverage is the priority",
            "4. Reserve minimum 8,000 tokens for sections 9-15",
            "",
        ]
    elif is_large:
        blocks += [
            f"NOTE: This submodule has {count} requirements. To ensure ALL 15 sections are completed:",
            "1. Be thorough but concise (2-4 paragraphs per section)",
            "2. Integrate requirements naturally into Sections 8-12",
            "3. Do NOT make Section 8 excessively long - distribute content across sections",
            "4. PRIORITIZE completing all sections over excessive detail in any one section",
            "",
        ]

    scope = ", ".join(spec.applies_to[:3]) + (", etc." if len(spec.applies_to) > 3 else "")
    blocks += [
        f'SECTION 1: Title "{spec.title}", Code {spec.code}, metadata from answers',
        "",
        f"SECTION 2: Purpose: {spec.description[:100]}...",
        "",
        f"SECTION 3: Scope: {scope}",
        "",
        "SECTIONS 4-7: Definitions, Roles, Prerequisites, Hazard Analysis - Standard SOP format, concise",
        "",
        f"SECTION 8: PROCEDURES - Integrate ALL {count} requirements",
    ]
    if is_very_large:
        first = ", ".join(r.code for r in listed[:5])
        blocks.append(f"List requirements concisely: {first}, ... (all {count})")
        blocks.append("Format: 1 paragraph per requirement, ~50-70 words each. Total Section 8: ~600-800 words.")
    elif is_large:
        blocks.append(f"Requirements: {', '.join(r.code for r in listed)}")
        blocks.append("Format: 1-2 paragraphs per requirement. Be efficient but complete.")
    blocks.append("")

    monitoring = sum(1 for r in listed if r.monitoring_expectations)
    blocks += [
        "SECTION 9: MONITORING PLAN - Specific monitoring procedures for each requirement",
        f"{monitoring} requirements need monitoring. For EACH, specify:",
        "- WHO monitors (specific job title)",
        '- WHEN (specific frequency: "Daily at 8 AM", "Every Monday", "Within 24 hours")',
        '- HOW (method: "Visual inspection using Checklist MON-01", "Review Form XYZ")',
        "- WHAT form/record used (generate realistic form numbers like MON-TR-01, MON-AUD-02)",
        '- ACCEPTANCE criteria ("≥95% completion", "No deficiencies", "Within limits")',
        '- WHAT happens if criteria not met ("Initiate CAPA per Section 11")',
        "",
    ]

    verification = sum(1 for r in listed if r.verification_expectations)
    blocks += [
        "SECTION 10: VERIFICATION & VALIDATION ACTIVITIES - Independent checks of monitoring effectiveness",
        f"{verification} requirements need verification. For EACH, specify:",
        '- Verification method: "Internal audit using Checklist VER-01", "Management review of reports"',
        '- Frequency: "Quarterly", "Semi-annually", "Annually on [specific month]"',
        '- Responsible party: Specific job title ("QA Manager", "Internal Auditor")',
        '- Records generated: "Audit Report VER-AUD-01", "Validation Study Report VER-VAL-01"',
        '- Record retention period: "3 years", "5 years", "Life of facility"',
        "",
        "SECTION 11: CORRECTIVE & PREVENTIVE ACTION (CAPA) PROTOCOL - Step-by-step procedures",
        "Use this format (be SPECIFIC):",
        '1. TRIGGERS: List specific triggers ("Monitoring failure", "Audit finding", "Customer complaint")',
        '2. INITIATION: "Within X hours, [Job Title] completes Form CAPA-INIT-01"',
        '3. INVESTIGATION: "[Job Title] conducts root cause analysis using 5-Why or Fishbone method within Y days"',
        '4. CORRECTIVE ACTIONS: "Immediate actions documented on Form CAPA-CORR-01 within Z hours"',
        '5. PREVENTIVE ACTIONS: "Long-term actions to prevent recurrence, documented with timelines"',
        '6. VERIFICATION: "QA Manager verifies effectiveness within [timeframe] using [method]"',
        '7. CLOSURE: "CAPA closed by [Job Title] when verified effective, filed in [location]"',
    ]
    if spec.capa_inject:
        blocks.append(f"Include {min(len(spec.capa_inject), 5)} specific CAPA scenarios from spec")
    blocks += ["", "SECTION 12: TRACEABILITY - Lot codes, record linkages, recall procedures"]
    if spec.traceability_inject:
        blocks.append(f"Include {min(len(spec.traceability_inject), 5)} key traceability requirements")
    blocks += [
        "",
        "SECTION 13: RECORD RETENTION & DOCUMENT CONTROL",
        "Create a detailed table with columns: Record Type | Form Number | Retention Period | "
        "Storage Location | Responsible Party",
        "Examples: 'Training Records | FSM-TR-01 | 2 years | SharePoint/Quality/Training | Food Safety Manager'",
        "Include ALL records generated by procedures in Sections 8-11 (monitoring forms, audit reports, "
        "CAPA records, etc.)",
        "",
        "SECTION 14: COMPLIANCE CROSSWALK TABLE",
        "Format as table: Primus Code | Requirement | Section Reference | Evidence/Form Number",
        "Example: '1.01.01 | Food Safety Policy | Section 2, 8 | Document FSM-POL-001, Form FSM-REV-01'",
        "Include ALL Primus GFS requirements from this submodule",
        "",
        "SECTION 15: REVISION HISTORY & APPROVAL SIGNATURES - Table with Version, Date, Description "
        "+ 3 signature lines",
        "",
        "⚡ FINAL REMINDER: Complete ALL 15 sections. Do not stop at Section 8. Reserve tokens for sections 9-15.",
    ]
    return "\n".join(blocks)


def build_answers_section(answers: dict[str, AnswerValue]) -> str:
    return "\n".join([
        "ORGANIZATION-SPECIFIC ANSWERS:",
        RULE,
        "Use these answers to populate the document with organization-specific information.",
        "Replace generic placeholders with actual values from answers below.",
        "",
        json.dumps(answers, indent=2, default=str),
        "",
    ])


def build_output_rules() -> str:
    return """CRITICAL OUTPUT TERMINATION RULES:
=================================
⚡ DO NOT STOP AFTER SECTION 8 (PROCEDURES)
⚡ YOU MUST GENERATE ALL 15 SECTIONS IN ORDER

If you complete Section 8 and have limited tokens remaining:
- Make sections 9-15 MORE CONCISE (2-3 paragraphs each)
- But DO NOT SKIP any section
- Complete all 15 sections before adding signatures

After completing "15. REVISION HISTORY & APPROVAL SIGNATURES" with the three signature lines:
  - Prepared By: _________________________ Date: __________
  - Reviewed By: _________________________ Date: __________
  - Approved By: _________________________ Date: __________

STOP IMMEDIATELY. END YOUR RESPONSE.

DO NOT ADD:
✗ Compliance summaries (e.g., "CHEMICAL COMPLIANCE:", "PEST COMPLIANCE:")
✗ Additional notes or appendices
✗ Program compliance sections
✗ Repeated content
✗ Explanations of what you generated
✗ Any text after the "Approved By" signature line

CORRECT FORMAT EXAMPLE (with Markdown formatting):
### 1.01.01 - Food Safety Policy Documentation

**Requirement:** A documented food safety policy detailing company's commitment to food safety
**Implementation Status:** Yes

The purpose of this Standard Operating Procedure...

INCORRECT FORMAT (DO NOT USE):
Plain text without formatting (lacks structure for Word conversion)

Your response MUST end exactly at the signature lines. Generate nothing after that point.
=================================

FORMATTING GUIDELINES:
=================================
✓ USE Markdown for proper formatting (will be converted to DOCX)
✓ Headers: Use ### for requirement subsections (e.g., "### 1.01.01 - Food Safety Policy")
✓ Bold: Use **text** for emphasis (e.g., "**Requirement:**", "**Implementation Status:**")
✓ Lists: Use standard list formatting ("- Item" or "1. Item")
✓ This Markdown will be automatically converted to proper Word formatting

Generate the final SOP document now. Output ONLY the complete document text with no preamble, no meta-commentary, no explanations. Start with the title and end with the approval signatures."""


def build_spec_driven_prompt(
    module_number: str,
    answers: dict[str, AnswerValue],
    document_name: Optional[str] = None,
    sub_module_name: Optional[str] = None,
    force_micro_categories: Optional[list[str]] = None,
    loader: FrameworkLoader | None = None,
) -> str:
    """Assemble the base prompt; raises SpecNotFoundError when no submodule matches."""
    loader = loader or get_framework_loader()
    module_spec = loader.load_module_spec(module_number)
    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)
    if spec is None:
        raise SpecNotFoundError(
            f"No submodule specification found for module {module_number}, "
            f"document: {document_name}, submodule: {sub_module_name}"
        )

    logger.info(f"[PROMPT] Building spec-driven prompt for {spec.code} - {spec.title}")

    categories = force_micro_categories if force_micro_categories is not None else list(spec.micro_inject)
    micro_rules = loader.get_relevant_micro_rules(categories)

    blocks = [
        build_system_role(),
        build_document_identification(spec, document_name, answers),
        build_requirements_section(spec),
        build_structure_template(module_spec),
        build_content_rules(spec),
    ]
    if micro_rules:
        blocks.append(build_micro_rules_section(micro_rules, categories))
    blocks += [
        build_section_guidance(spec),
        build_answers_section(answers),
        build_output_rules(),
    ]
    return "\n\n".join(blocks)


# ── Enhanced prompt: placement map + header checklist ────

def build_requirement_section_mapping(mappings: list[RequirementMapping]) -> str:
    """Group requirement codes under their target section numbers."""
    grouped: dict[int, list[RequirementMapping]] = {}
    for m in mappings:
        grouped.setdefault(m.section_number, []).append(m)

    lines: list[str] = []
    for section in sorted(grouped):
        lines.append(f"\nSection {section}:")
        lines.extend(f"  - {m.code}: {m.question}" for m in grouped[section])
    return "\n".join(lines)


def build_requirement_structure_guidance(mappings: list[RequirementMapping]) -> str:
    if not mappings:
        return ""

    codes = ", ".join(m.code for m in mappings)
    numbered = "\n".join(f"{i}. ### {m.code} - ({m.question[:50]}...)" for i, m in enumerate(mappings, 1))
    checklist = "\n".join(f"☐ ### {m.code} - header present with content" for m in mappings)

    return f"""
REQUIREMENT-SPECIFIC CONTENT STRUCTURE (MANDATORY):
===================================================
YOU MUST structure content using Primus GFS requirement codes as subsection headers.

FORMAT FOR SECTIONS WITH REQUIREMENTS:
Each section must include subsections for relevant requirements in this EXACT format:

### {{REQUIREMENT_CODE}} - {{REQUIREMENT_TITLE}}

**Requirement:** {{Brief statement of what Primus GFS requires}}
**Implementation Status:** {{Answer from provided data}}

{{2-3 paragraphs describing HOW this requirement is met, referencing the answer}}

EXAMPLE for Section 8 (Procedures):

8. PROCEDURES

### 1.01.01 - Food Safety Policy Documentation

**Requirement:** A documented food safety policy must be established and maintained.
**Implementation Status:** Yes - Policy documented as of the effective date

The company has established a comprehensive food safety policy that outlines our commitment
to producing safe food products. This policy is reviewed annually by the approver and updated
as needed to reflect regulatory changes.

### 1.01.02 - Policy Review and Update Frequency

**Requirement:** Food safety policy must be reviewed at defined intervals.
**Implementation Status:** Quarterly reviews conducted

The Food Safety Manager conducts formal policy reviews on a quarterly basis.

DETERMINISTIC RULES:
1. Requirement codes MUST match exactly: {codes}
2. Sort requirements numerically within each section (ascending order)
3. Every requirement answer MUST appear under its corresponding code header
4. Use exact format: "### {{code}} - {{title}}" (3 hashes, space, code, space, hyphen, space, title)
5. Blank line before "**Requirement:**", blank line after Implementation Status, then content paragraphs
6. If a requirement has no associated answer, use: "**Implementation Status:** To be determined"

REQUIREMENT-TO-SECTION MAPPING (follow this exactly):
{build_requirement_section_mapping(mappings)}

ALL {len(mappings)} REQUIREMENTS LISTED ABOVE MUST APPEAR AS HEADERS IN THEIR ASSIGNED SECTIONS.

CRITICAL - MANDATORY REQUIREMENT CHECKLIST:
===========================================
YOU MUST GENERATE HEADERS FOR EVERY SINGLE REQUIREMENT BELOW.
Before finishing your response, verify that ALL of these headers appear in your output:

{numbered}

VERIFICATION CHECKLIST (verify each before responding):
{checklist}

DO NOT SKIP ANY REQUIREMENT. All {len(mappings)} headers listed above are MANDATORY.
If you cannot find a natural place for a requirement, add it to Section 8 (Procedures) with appropriate content.
"""


def build_answer_placement_map(answers: dict[str, AnswerValue], mappings: list[RequirementMapping]) -> str:
    core = []
    for field in CORE_FIELD_ORDER:
        if field not in answers:
            continue
        value = format_answer_for_display(answers[field])
        location = CORE_FIELD_LOCATIONS.get(field, "Section 1").format(value=value)
        core.append(f'- {field}: "{value}" → {location}')
    requirements = [
        f'- {m.code}: "{format_answer_for_display(m.answer)}" → Under "### {m.code} - ..." in Section {m.section_number}'
        for m in mappings
    ]
    core_block = "\n".join(core)
    requirement_block = "\n".join(requirements)
    return f"""
MANDATORY ANSWER PLACEMENT (inject exact values shown):
========================================================
CORE FIELDS (must appear in Sections 1 and 15):
{core_block}

REQUIREMENT ANSWERS (must appear under their ### headers):
{requirement_block}

CRITICAL: Every answer listed above MUST appear in the document at its specified location.
Use the EXACT values shown (do not paraphrase or summarize).
Place requirement answers within 2-3 paragraphs under their respective ### headers.
"""


def inject_requirement_guidance(base_prompt: str, placement_map: str, structure_guidance: str) -> str:
    """
    Insert the placement map and header guidance before the first structure
    marker.  Without a marker only the header guidance is appended.
    """
    for marker in STRUCTURE_MARKERS:
        index = base_prompt.find(marker)
        if index != -1:
            logger.info(f"[ENHANCED] Injecting requirement guidance before marker '{marker}' at {index}")
            return (
                base_prompt[:index]
                + placement_map
                + "\n\n"
                + structure_guidance
                + "\n\n"
                + base_prompt[index:]
            )

    logger.warning(
        f"[ENHANCED] No structure marker in base prompt ({len(base_prompt)} chars); "
        f"appending requirement guidance at end"
    )
    return base_prompt + "\n\n" + structure_guidance


def build_enhanced_spec_driven_prompt(
    module_number: str,
    answers: dict[str, AnswerValue],
    questions: list[QuestionItem],
    document_name: Optional[str] = None,
    sub_module_name: Optional[str] = None,
    force_micro_categories: Optional[list[str]] = None,
    loader: FrameworkLoader | None = None,
    mappings: Optional[list[RequirementMapping]] = None,
) -> str:
    """Base prompt plus answer placement map and requirement header guidance."""
    loader = loader or get_framework_loader()
    base = build_spec_driven_prompt(
        module_number, answers, document_name, sub_module_name, force_micro_categories, loader
    )
    if mappings is None:
        mappings = map_answers_to_requirements(
            answers, questions, module_number, document_name, sub_module_name, loader
        )
    if not mappings:
        logger.info("[ENHANCED] No requirement mappings found, using base prompt")
        return base

    logger.info(f"[ENHANCED] Adding placement map and header guidance for {len(mappings)} requirements")
    return inject_requirement_guidance(
        base,
        build_answer_placement_map(answers, mappings),
        build_requirement_structure_guidance(mappings),
    )
