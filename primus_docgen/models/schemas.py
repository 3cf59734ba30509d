"""
Reusable data schemas for the framework taxonomy and for every result
object produced by the generation pipeline.

Framework models mirror the camelCase JSON files under framework_data/ and
are frozen: the taxonomy is read-only once loaded.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional, Union
from pydantic import BaseModel, Field

from .enums import (
    AttemptOutcome,
    CrosswalkStatus,
    FailureReason,
    QuestionType,
    Severity,
    ValidationErrorType,
    ValidationWarningType,
)

AnswerValue = Union[bool, int, float, date, datetime, str, None]


class FrameworkModel(BaseModel):
    """Base for read-only taxonomy records loaded from JSON."""

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }


# ── Submodule specifications ─────────────────────────────


class SubmoduleRequirement(FrameworkModel):
    """
    One requirement inside a submodule.

    Modules 1-3 use the ``required``/``text``/``keywords`` layout; modules 4+
    carry an auditor ``question`` and ``totalPoints`` instead.
    """
    id: str = ""
    code: str
    required: Optional[bool] = None
    text: Optional[str] = None
    question: Optional[str] = None
    total_points: Optional[float] = Field(default=None, alias="totalPoints")
    keywords: list[str] = []
    mandatory_statements: list[str] = Field(default_factory=list, alias="mandatoryStatements")
    monitoring_expectations: str = Field(default="", alias="monitoringExpectations")
    verification_expectations: str = Field(default="", alias="verificationExpectations")
    traceability_expectations: Optional[str] = Field(default=None, alias="traceabilityExpectations")
    capa_triggers_for: list[str] = Field(default_factory=list, alias="capaTriggersFor")
    risk_level: Optional[str] = Field(default=None, alias="riskLevel")
    target_section: Optional[int] = Field(default=None, alias="targetSection")

    @property
    def is_legacy_format(self) -> bool:
        return self.required is not None and self.text is not None

    @property
    def description(self) -> str:
        return self.text or self.question or self.code


class SubmoduleSpec(FrameworkModel):
    code: str
    title: str
    module_name: str = Field(default="", alias="moduleName")
    applies_to: list[str] = Field(default_factory=list, alias="appliesTo")
    description: str = ""
    requirements: list[SubmoduleRequirement] = []
    micro_inject: list[str] = []
    capa_inject: list[str] = Field(default_factory=list, alias="capaInject")
    traceability_inject: list[str] = Field(default_factory=list, alias="traceabilityInject")
    hazard_inject: list[str] = Field(default_factory=list, alias="hazardInject")
    records_inject: list[str] = Field(default_factory=list, alias="recordsInject")
    training_inject: list[str] = Field(default_factory=list, alias="trainingInject")
    has_sub_submodules: bool = Field(default=False, alias="hasSubSubmodules")

    @property
    def required_requirements(self) -> list[SubmoduleRequirement]:
        return [r for r in self.requirements if r.required]


class SubSubmoduleSpec(FrameworkModel):
    code: str
    parent_code: str = Field(alias="parentCode")
    title: str
    requirements: list[SubmoduleRequirement] = []
    mandatory_statements: list[str] = Field(default_factory=list, alias="mandatoryStatements")
    capa_inject: list[str] = Field(default_factory=list, alias="capaInject")
    traceability_inject: list[str] = Field(default_factory=list, alias="traceabilityInject")
    micro_inject: list[str] = []
    module_name: Optional[str] = Field(default=None, alias="moduleName")
    applies_to: list[str] = Field(default_factory=list, alias="appliesTo")
    description: Optional[str] = None
    hazard_inject: list[str] = Field(default_factory=list, alias="hazardInject")
    records_inject: list[str] = Field(default_factory=list, alias="recordsInject")
    training_inject: list[str] = Field(default_factory=list, alias="trainingInject")


# ── Module specifications ────────────────────────────────


class SubmoduleReference(FrameworkModel):
    code: str
    name: str
    alias: Optional[str] = None
    spec_file: str = Field(default="", alias="specFile")
    micro_inject: list[str] = []


class SectionTemplate(FrameworkModel):
    number: int
    title: str
    required: bool = True
    min_paragraphs: int = Field(default=1, alias="minParagraphs")
    content_guidance: str = Field(default="", alias="contentGuidance")
    subsections: list[str] = []


class DocumentStructureTemplate(FrameworkModel):
    sections: list[SectionTemplate] = []


class ModuleSpec(FrameworkModel):
    module: str
    module_name: str = Field(alias="moduleName")
    description: str = ""
    scope: str = ""
    submodules: list[SubmoduleReference] = []
    document_structure_template: DocumentStructureTemplate = Field(alias="documentStructureTemplate")
    compliance_keywords: dict[str, list[str]] = Field(default_factory=dict, alias="complianceKeywords")


# ── Micro-rules, checklists, templates ───────────────────


class MicroRules(FrameworkModel):
    category: str
    rules: dict[str, str] = {}
    applicability: Optional[str] = None
    priority: Optional[str] = None


class ChecklistRequirement(FrameworkModel):
    code: str
    description: str
    mandatory: bool = True
    keywords: list[str] = []


class ChecklistSection(FrameworkModel):
    code: str
    name: str
    requirements: list[ChecklistRequirement] = []


class ModuleChecklist(FrameworkModel):
    module: str
    module_name: str = Field(default="", alias="moduleName")
    sections: list[ChecklistSection] = []


class TemplateMetadata(FrameworkModel):
    module: str
    sub_module: Optional[str] = None
    file_path: str
    keywords: list[str] = []


# ── Request context ──────────────────────────────────


class ModuleContext(BaseModel):
    """Which part of the framework a document is being generated for."""
    module_number: str = "1"
    sub_module_name: Optional[str] = None
    module_name: Optional[str] = None


# ── Questions & requirement mapping ──────────────────────


class QuestionItem(BaseModel):
    """A question shown to the user; ``id`` doubles as the answer key."""
    model_config = {"populate_by_name": True}

    id: str
    question: str
    type: QuestionType = QuestionType.TEXT
    hint: Optional[str] = None
    checklist_refs: Optional[list[str]] = Field(default=None, alias="checklistRefs")


class RequirementMapping(BaseModel):
    """Links one answered question to its requirement code and target section."""
    code: str
    question_id: str
    answer: Any = None
    question: str
    requirement_text: str
    section_number: int


class AnswerPresenceResult(BaseModel):
    missing: list[str] = []
    found: list[str] = []
    missing_requirement_headers: list[str] = []
    found_requirement_headers: list[str] = []
    answers_not_near_header: list[str] = []


# ── Output validation ────────────────────────────────────


class ValidationIssue(BaseModel):
    type: ValidationErrorType
    severity: Severity
    message: str
    context: Optional[str] = None
    line_number: Optional[int] = None


class ValidationWarning(BaseModel):
    type: ValidationWarningType
    message: str
    context: Optional[str] = None


class ValidationResult(BaseModel):
    valid: bool
    errors: list[ValidationIssue] = []
    warnings: list[ValidationWarning] = []
    sanitized_output: Optional[str] = None


class ForbiddenCheckResult(BaseModel):
    has_forbidden_patterns: bool = False
    forbidden_patterns: list[str] = []
    snippets: list[str] = []  # context around each hit, surfaced in retry feedback


class ProceduralQualityResult(BaseModel):
    score: int = 100
    warnings: list[str] = []
    suggestions: list[str] = []
    metrics: dict[str, int] = {}


# ── Compliance engine ────────────────────────────────────


class CrosswalkEntry(BaseModel):
    requirement_code: str
    requirement_description: str
    mandatory: bool
    document_section: Optional[str] = None
    evidence: str
    status: CrosswalkStatus
    matched_keywords: list[str] = []


class CrosswalkReport(BaseModel):
    module_number: str
    module_name: str
    generated_date: str
    total_requirements: int = 0
    fulfilled_count: int = 0
    gap_count: int = 0
    entries: list[CrosswalkEntry] = []


class ComplianceLintIssue(BaseModel):
    rule_id: str
    rule_text: str
    category: str
    found: bool = False
    suggested_insertion: Optional[str] = None
    insert_after_section: Optional[str] = None


class ComplianceLintReport(BaseModel):
    total_rules_checked: int = 0
    missing_rules_count: int = 0
    issues: list[ComplianceLintIssue] = []
    corrected_document: Optional[str] = None


class StructureCheck(BaseModel):
    valid: bool
    missing_sections: list[str] = []


class ComplianceSummary(BaseModel):
    crosswalk: CrosswalkReport
    lint: ComplianceLintReport
    structure: StructureCheck
    placeholders: int = 0
    overall_score: int = 0  # 0-100
    recommendations: list[str] = []


# ── Generation requests / results ────────────────────────


class DocumentGenerationOptions(BaseModel):
    module_number: str = "1"
    sub_module_name: Optional[str] = None
    document_name: Optional[str] = None
    answers: dict[str, AnswerValue] = {}
    force_micro_categories: Optional[list[str]] = None
    two_pass: bool = False
    template_text: str = ""


class AttemptReport(BaseModel):
    """Everything the validator learned about one generation attempt."""
    attempt: int
    document: str = ""
    forbidden: ForbiddenCheckResult = Field(default_factory=ForbiddenCheckResult)
    answers: Optional[AnswerPresenceResult] = None
    section_count: int = 0
    word_count: int = 0
    validation: Optional[ValidationResult] = None
    quality: Optional[ProceduralQualityResult] = None


class AttemptResult(BaseModel):
    """Decision taken after an attempt: accept it, retry with feedback, or give up."""
    outcome: AttemptOutcome
    reason: Optional[FailureReason] = None
    feedback: str = ""
    message: str = ""
    details: dict[str, Any] = {}


class DocumentVerification(BaseModel):
    """Structured reply of the optional second-pass completeness check."""
    ok: bool = True
    missing_sections: list[str] = []
    issues: list[str] = []


class QuestionVerification(BaseModel):
    """Structured reply of the optional question verification pass."""
    valid: bool = True
    issues: list[str] = []
    questions: list[QuestionItem] = []


class GenerationValidationSummary(BaseModel):
    valid: bool
    error_count: int = 0
    warning_count: int = 0
    missing_requirements: list[str] = []
    answers_not_near_header: list[str] = []


class GenerationMetadata(BaseModel):
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    template_used: Optional[str] = None
    micro_categories_applied: list[str] = []
    word_count: int = 0
    content_hash: str = ""
    inputs_hash: str = ""
    attempts: int = 0


class GeneratedDocument(BaseModel):
    content: str
    module_number: str
    submodule_code: Optional[str] = None
    submodule_title: Optional[str] = None
    requirements_count: int = 0
    validation: GenerationValidationSummary
    compliance_score: Optional[int] = None
    metadata: GenerationMetadata = Field(default_factory=GenerationMetadata)
