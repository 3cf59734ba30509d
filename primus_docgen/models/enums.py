from enum import Enum


class QuestionType(str, Enum):
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    NUMBER = "number"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


class ValidationErrorType(str, Enum):
    FORBIDDEN_PATTERN = "FORBIDDEN_PATTERN"
    MISSING_SECTION = "MISSING_SECTION"
    INCOMPLETE_CONTENT = "INCOMPLETE_CONTENT"
    PLACEHOLDER_DETECTED = "PLACEHOLDER_DETECTED"


class ValidationWarningType(str, Enum):
    SUSPICIOUS_CONTENT = "SUSPICIOUS_CONTENT"
    FORMATTING_ISSUE = "FORMATTING_ISSUE"
    LENGTH_CONCERN = "LENGTH_CONCERN"


class MicroRuleCategory(str, Enum):
    PEST = "pest"
    CHEMICAL = "chemical"
    GLASS_BRITTLE_PLASTIC = "glass_brittle_plastic"
    DOCUMENT_CONTROL = "document_control"
    HACCP = "haccp"
    TRACEABILITY = "traceability"
    ALLERGEN = "allergen"


class CrosswalkStatus(str, Enum):
    FULFILLED = "FULFILLED"
    GAP = "GAP"


class QuestionSource(str, Enum):
    SPECIFICATION = "specification"
    TEMPLATE = "template"
    FALLBACK = "fallback"


class AttemptOutcome(str, Enum):
    ACCEPT = "ACCEPT"
    RETRY = "RETRY"
    FAIL = "FAIL"


class FailureReason(str, Enum):
    """Why an attempt was rejected."""
    FORBIDDEN_PATTERN = "FORBIDDEN_PATTERN"
    MISSING_ANSWERS = "MISSING_ANSWERS"
    INCOMPLETE_SECTIONS = "INCOMPLETE_SECTIONS"


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    RETRYING = "RETRYING"
    ACCEPTED = "ACCEPTED"
    FAILED = "FAILED"
