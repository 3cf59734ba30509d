"""
Question generation for a document request.

The primary path is deterministic: six core document-control questions plus
one question per requirement of the resolved submodule spec.  Only when the
spec cannot be resolved does the model get asked to extract questions from
a template, and its output is validated before use.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

from pydantic import ValidationError

from primus_docgen.exceptions import QuestionExtractionError, SpecNotFoundError
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.generation.requirements import CORE_FIELD_ORDER
from primus_docgen.models.enums import QuestionType
from primus_docgen.models.schemas import (
    ChecklistRequirement,
    ModuleContext,
    QuestionItem,
    QuestionVerification,
    SubmoduleRequirement,
)
from primus_docgen.services.llm_service import llm_json_call, llm_text_call

logger = logging.getLogger(__name__)

CORE_QUESTIONS: list[QuestionItem] = [
    QuestionItem(id="company_name", question="What is the company name?", type=QuestionType.TEXT,
                 hint="Legal business name"),
    QuestionItem(id="facility_name", question="What is the facility name?", type=QuestionType.TEXT,
                 hint="Specific site or location name"),
    QuestionItem(id="document_number", question="What is the document control number?", type=QuestionType.TEXT,
                 hint="Unique identifier for this document"),
    QuestionItem(id="document_version", question="What is the current document version?", type=QuestionType.TEXT,
                 hint="Version or revision number (e.g., 1.0, Rev. 2)"),
    QuestionItem(id="effective_date", question="What is the effective date?", type=QuestionType.DATE,
                 hint="Date when this document becomes active"),
    QuestionItem(id="approved_by", question="Who approved this document?", type=QuestionType.TEXT,
                 hint="Name and title of approving authority"),
]

# Extra question ids from the model must start with one of these (warned, not enforced).
ALLOWED_EXTRA_PREFIXES = [
    "document_",
    "revision_",
    "food_safety_",
    "internal_",
    "management_",
    "monitoring_",
    "corrective_",
    "capa_",
    "traceability_",
    "responsibility_",
    "record_",
    "hazard_",
    "ccp_",
    "verification_",
    "training_",
    "audit_",
]
_EXTRA_PREFIX_RE = re.compile(
    "^(?:" + "|".join(re.sub(r"[_-]", "[_-]?", p) for p in ALLOWED_EXTRA_PREFIXES) + ")"
)

# Used only when a module checklist file cannot be read.
MODULE_CHECKLIST_FALLBACK: dict[str, list[tuple[str, str]]] = {
    "1": [
        ("1.01", "Food safety policy documented"),
        ("1.02", "Management responsibility defined"),
        ("1.03", "Internal audit program established"),
        ("1.04", "CAPA procedure implemented"),
        ("1.05", "Training program documented"),
        ("1.06", "Document control/versioning"),
    ],
    "2": [
        ("2.01", "Water risk assessment"),
        ("2.02", "Soil amendments management"),
        ("2.03", "Worker hygiene practices"),
        ("2.04", "Harvest field sanitation"),
        ("2.05", "Traceability field to packing"),
    ],
    "3": [
        ("3.01", "Environmental monitoring program"),
        ("3.02", "Nutrient solution management"),
        ("3.03", "Contamination prevention"),
    ],
    "4": [
        ("4.01", "Harvester hygiene training"),
        ("4.02", "Harvest equipment sanitation"),
        ("4.03", "Lot identification at harvest"),
    ],
    "5": [
        ("5.01", "Facility design for segregation"),
        ("5.02", "SSOPs documented"),
        ("5.03", "Pest control program"),
        ("5.04", "Glass & brittle plastic control"),
        ("5.05", "Water quality monitoring"),
    ],
    "6": [
        ("6.01", "HACCP team qualifications"),
        ("6.02", "Hazard analysis completed"),
        ("6.03", "CCP identification & justification"),
        ("6.04", "Critical limits documented"),
        ("6.05", "Monitoring procedures for CCPs"),
        ("6.06", "Verification & validation records"),
    ],
}


# ── Requirement → question ───────────────────────────────

def determine_question_type(text: str, keywords: list[str]) -> QuestionType:
    lower = text.lower()
    if any(p in lower for p in ("must be", "established", "implemented", "documented")):
        return QuestionType.BOOLEAN
    if any("date" in kw.lower() or "frequency" in kw.lower() for kw in keywords):
        return QuestionType.DATE
    if any(p in lower for p in ("how many", "how often", "frequency", "hours")):
        return QuestionType.NUMBER
    return QuestionType.TEXT


def generate_question_from_requirement(text: str) -> str:
    """Turn a requirement statement into a question ("X must be Y" -> "Is X Y?")."""
    if "must be" in text:
        head, _, tail = text.partition("must be")
        return f"Is {head.strip()} {tail.strip()}?"
    if "must include" in text:
        head, _, tail = text.partition("must include")
        return f"Does {head.strip()} include {tail.strip()}?"
    if "must" in text:
        return f"Is the following requirement met: {text}?"
    return f"Has the following been implemented: {text}?"


def requirement_question_id(code: str) -> str:
    return "requirement_" + code.replace(".", "_").lower()


def question_from_requirement(req: SubmoduleRequirement) -> Optional[QuestionItem]:
    """Question for one spec requirement; None when the requirement has neither text nor question."""
    qid = requirement_question_id(req.code)

    if req.is_legacy_format:
        label = "REQUIRED - " if req.required else "OPTIONAL - "
        return QuestionItem(
            id=qid,
            question=generate_question_from_requirement(req.text),
            type=determine_question_type(req.text, req.keywords),
            hint=f"{label}{req.code}: {req.text[:60]}...",
            checklist_refs=[req.code],
        )

    if req.question:
        points = req.total_points if req.total_points is not None else 0
        return QuestionItem(
            id=qid,
            question=req.question,
            type=QuestionType.TEXT,
            hint=f"Primus GFS {req.code} - {points:g} points",
            checklist_refs=[req.code],
        )

    return None


def build_questions_from_spec(
    module_number: str,
    document_name: Optional[str] = None,
    sub_module_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> list[QuestionItem]:
    """
    Six core questions plus one per requirement of the matching submodule.
    Returns only the core questions when no submodule spec matches.
    """
    loader = loader or get_framework_loader()
    questions = [q.model_copy() for q in CORE_QUESTIONS]

    spec = loader.find_submodule_spec_by_name(module_number, document_name, sub_module_name)
    if spec is None:
        logger.warning(f"[QUESTIONS] No spec found; returning {len(questions)} core questions only")
        return questions

    for req in spec.requirements:
        question = question_from_requirement(req)
        if question is not None:
            questions.append(question)

    logger.info(f"[QUESTIONS] {spec.code} - {spec.title}: {len(questions)} questions generated")
    return questions


# ── Question validation ──────────────────────────────────

def validate_questions(raw: list[QuestionItem]) -> list[QuestionItem]:
    """
    Reject duplicate or malformed questions; order core fields by
    CORE_FIELD_ORDER, then extras by id.
    """
    seen: set[str] = set()
    core: list[QuestionItem] = []
    extras: list[QuestionItem] = []

    for q in raw:
        if not q.id:
            raise QuestionExtractionError("Question missing id")
        if q.id in seen:
            raise QuestionExtractionError(f"Duplicate id: {q.id}")
        seen.add(q.id)
        if not q.question:
            raise QuestionExtractionError(f"Question missing wording: {q.id}")

        if q.id in CORE_FIELD_ORDER:
            core.append(q)
        else:
            if not _EXTRA_PREFIX_RE.match(q.id) and not q.id.startswith("requirement_"):
                logger.warning(f"[QUESTIONS] Extra field id '{q.id}' not using allowed prefix. Allowing anyway.")
            extras.append(q)

    core.sort(key=lambda q: CORE_FIELD_ORDER.index(q.id))
    extras.sort(key=lambda q: q.id)
    return core + extras


def safe_extract_json_array(text: str) -> str:
    """Cut the leading JSON array out of a model reply."""
    trimmed = text.strip()
    if not trimmed.startswith("["):
        raise QuestionExtractionError(
            f"Model output is not a JSON array (no leading '['). Raw: {trimmed[:120]}"
        )
    last = trimmed.rfind("]")
    if last == -1:
        raise QuestionExtractionError("Model output missing closing ']' for JSON array.")
    return trimmed[: last + 1]


def _parse_questions(raw_json: str) -> list[QuestionItem]:
    try:
        data = json.loads(raw_json)
        return [QuestionItem.model_validate(item) for item in data]
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise QuestionExtractionError(f"Invalid question JSON from model: {e}") from e


# ── Checklist context ────────────────────────────────────

def get_module_checklist_items(
    module_number: str, loader: FrameworkLoader | None = None
) -> list[ChecklistRequirement]:
    loader = loader or get_framework_loader()
    try:
        return loader.get_all_requirements(module_number)
    except SpecNotFoundError:
        logger.warning(f"[QUESTIONS] Checklist for module {module_number} unavailable, using fallback")
        return [
            ChecklistRequirement(code=code, description=desc, mandatory=True)
            for code, desc in MODULE_CHECKLIST_FALLBACK.get(module_number, [])
        ]


def detect_document_type(document_name: Optional[str], context: Optional[ModuleContext] = None) -> str:
    """Generation guidance block describing what kind of document is being written."""
    doc = (document_name or "").lower()
    module = context.module_number if context else "1"

    if "policy" in doc and "food safety" in doc:
        return (
            "✓ DOCUMENT TYPE: Food Safety Policy (Module 1.01)\n"
            f'✓ DOCUMENT NAME: "{document_name}"\n'
            '✓ TITLE FORMAT: "FOOD SAFETY POLICY"\n'
            "✓ STRUCTURE: Management policy statement (NOT a procedure)\n"
            "✓ CONTENT FOCUS: Commitment statements, management responsibility, policy objectives\n"
            "✓ TONE: Authoritative, declarative (We commit to..., Management ensures..., Our policy is...)\n"
            "✓ LENGTH: Shorter than procedures (1500-2500 words acceptable for policies)"
        )

    if "policy" in doc and "control" not in doc:
        return (
            f"✓ DOCUMENT TYPE: Policy Document (Module {module})\n"
            f'✓ DOCUMENT NAME: "{document_name}"\n'
            '✓ TITLE FORMAT: Use exact name from documentName (e.g., "TRACEABILITY POLICY")\n'
            "✓ STRUCTURE: Policy statement (NOT a procedure)\n"
            "✓ CONTENT FOCUS: Policy objectives, commitments, management responsibility\n"
            "✓ TONE: Authoritative, declarative (We commit to..., Management ensures...)\n"
            "✓ LENGTH: 1500-2500 words (policies are shorter than procedures)"
        )

    if any(k in doc for k in ("procedure", "sop", "control", "program")):
        return (
            f"✓ DOCUMENT TYPE: Standard Operating Procedure (Module {module})\n"
            f'✓ DOCUMENT NAME: "{document_name}"\n'
            "✓ TITLE FORMAT: Use exact name from documentName\n"
            "✓ STRUCTURE: Full 15-section SOP format\n"
            "✓ CONTENT FOCUS: Step-by-step procedures, monitoring, verification, CAPA\n"
            "✓ TONE: Procedural, instructional (specific steps, responsibilities, actions)\n"
            "✓ LENGTH: 2500-4000 words (comprehensive procedures)"
        )

    if "manual" in doc or "haccp plan" in doc:
        return (
            "✓ DOCUMENT TYPE: HACCP Manual Section (Module 6)\n"
            f'✓ DOCUMENT NAME: "{document_name}"\n'
            "✓ TITLE FORMAT: Use exact name from documentName\n"
            "✓ STRUCTURE: Full 15-section format with HACCP-specific content\n"
            "✓ CONTENT FOCUS: Hazard analysis, CCPs, critical limits, monitoring, verification\n"
            "✓ TONE: Technical, precise (specific parameters, measurements, validation data)\n"
            "✓ LENGTH: 3000-5000 words (comprehensive HACCP documentation)"
        )

    if any(k in doc for k in ("form", "record", "log", "checklist")):
        return (
            f"✓ DOCUMENT TYPE: Form/Record Template (Module {module})\n"
            f'✓ DOCUMENT NAME: "{document_name}"\n'
            "✓ TITLE FORMAT: Use exact name from documentName\n"
            "✓ STRUCTURE: Form layout with fields, instructions for completion\n"
            "✓ CONTENT FOCUS: Form fields, data entry instructions, frequency, responsible parties\n"
            "✓ TONE: Instructional, clear (field labels, completion instructions)\n"
            "✓ LENGTH: 800-1500 words (forms are concise)"
        )

    return (
        f"✓ DOCUMENT TYPE: Standard Operating Procedure (Module {module})\n"
        f'✓ DOCUMENT NAME: "{document_name}"\n'
        "✓ TITLE FORMAT: Use exact name from documentName (preserve as given)\n"
        "✓ STRUCTURE: Full 15-section SOP format\n"
        "✓ CONTENT FOCUS: Comprehensive procedures for the specific topic\n"
        "✓ LENGTH: 2500-4000 words"
    )


# ── LLM extraction fallback ──────────────────────────────

def build_extraction_prompt(
    template_text: str,
    context: Optional[ModuleContext] = None,
    loader: FrameworkLoader | None = None,
) -> str:
    module = context.module_number if context else "1"
    checklist = get_module_checklist_items(module, loader)
    checklist_block = "\n".join(
        f"- {c.code}: {c.description} ({'MANDATORY' if c.mandatory else 'OPTIONAL'})" for c in checklist
    )
    codes = ", ".join(c.code for c in checklist)

    return (
        "You are a deterministic Primus GFS v4.0 compliance question extractor. Output ONLY strict JSON.\n"
        "ROLE: Identify organization-specific data points required to finalize this template for "
        f"Primus GFS audit readiness for Module {module}.\n\n"
        "STRICT RULES:\n"
        "1. Return ONLY a JSON array. No prose, no markdown, no comments.\n"
        "2. Array length: 7 to 15 items total.\n"
        f"3. First {len(CORE_FIELD_ORDER)} items MUST be the core fields IN EXACT ORDER if relevant; "
        "omit only if truly irrelevant (still preserve order of those used).\n"
        "4. Additional fields MUST derive from: placeholders {{like_this}}, explicit section headings, "
        f"mandatory checklist items ({codes}), or obvious data gaps needed for monitoring, verification, "
        "CAPA, traceability.\n"
        "5. No speculative or generic best-practice questions.\n"
        "6. Field ids: snake_case; core fields fixed; extras must start with one of prefixes: "
        f"{', '.join(ALLOWED_EXTRA_PREFIXES)}.\n"
        '7. Allowed types: "text" | "boolean" | "date" | "number".\n'
        "8. Boolean ONLY for compliance status or existence (e.g., presence of plan / program).\n"
        "9. Each item MUST map at least one checklist reference code in checklistRefs when derived "
        "from a checklist requirement.\n"
        "10. Deterministic wording: do not vary synonyms across runs.\n"
        "11. Hints optional; if present must be < 120 chars and may cite Primus code.\n"
        "12. NO placeholders like [FILL], no TBD, no nulls.\n"
        "13. If facility_name not applicable, exclude it (do not replace with another field in that slot).\n"
        "14. Maintain stable ordering: core fields first (filtered), then extras sorted alphabetically by id.\n\n"
        "OUTPUT JSON SCHEMA (informal):\n"
        "[\n  {\n    \"id\": string,\n    \"question\": string,\n"
        "    \"type\": \"text\"|\"boolean\"|\"date\"|\"number\",\n"
        "    \"hint\"?: string,\n    \"checklistRefs\"?: string[]\n  }\n]\n\n"
        f"CHECKLIST (Module {module}):\n{checklist_block}\n\n"
        f"TEMPLATE:\n<<<BEGIN_TEMPLATE>>>\n{template_text}\n<<<END_TEMPLATE>>>\n\n"
        "Return JSON now:"
    )


def verify_extracted_questions(
    questions: list[QuestionItem],
    context: Optional[ModuleContext] = None,
    loader: FrameworkLoader | None = None,
) -> QuestionVerification:
    """Second model pass that may adjust hints / refs but never ids or types."""
    module = context.module_number if context else "1"
    checklist = get_module_checklist_items(module, loader)
    questions_json = json.dumps([q.model_dump(by_alias=True, exclude_none=True) for q in questions], indent=2)
    prompt = (
        f"You validate a JSON question array for Primus GFS Module {module}.\n"
        "Rules:\n"
        "- Ensure each core field present is appropriate; do not add new fields.\n"
        "- Ensure extras map to checklist or justified data gaps (monitoring, CAPA, CCP, traceability).\n"
        "- Report valid, issues and the (possibly adjusted) questions.\n"
        "- If modifying hints or checklistRefs for accuracy you may adjust them; DO NOT change ids or types.\n\n"
        f"Checklist Codes: {', '.join(c.code for c in checklist)}\n"
        f"Input Questions JSON:\n{questions_json}\n"
    )
    return llm_json_call(prompt, QuestionVerification)


def extract_questions(
    template_text: str,
    context: Optional[ModuleContext] = None,
    verify_pass: bool = False,
    document_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
) -> list[QuestionItem]:
    """
    Questions for a document: from the spec when it resolves to requirement
    questions, otherwise extracted from the template by the model.
    """
    loader = loader or get_framework_loader()
    module = context.module_number if context else "1"
    sub_module = context.sub_module_name if context else None

    spec_questions = build_questions_from_spec(module, document_name, sub_module, loader)
    if len(spec_questions) > len(CORE_QUESTIONS):
        logger.info(f"[EXTRACT] Using spec-based questions: {len(spec_questions)}")
        return validate_questions(spec_questions)

    logger.warning("[EXTRACT] Falling back to model-based question extraction")
    raw = llm_text_call(build_extraction_prompt(template_text, context, loader), max_tokens=1800)
    validated = validate_questions(_parse_questions(safe_extract_json_array(raw)))

    if verify_pass:
        try:
            verification = verify_extracted_questions(validated, context, loader)
        except Exception as e:
            logger.warning(f"[EXTRACT] Verification pass failed: {e}")
            return validated
        if not verification.valid:
            logger.warning(f"[EXTRACT] Question verification issues: {verification.issues}")
        elif verification.questions:
            return validate_questions(verification.questions)

    return validated
