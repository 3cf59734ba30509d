"""
Validator Vocabulary — the pattern tables behind the output validator.

Every regex the validator uses (forbidden meta-commentary, suspicious
phrasing, mandatory section titles, post-signature markers) is data held
in these pydantic config models.  The defaults encode the Primus GFS
vocabulary; a JSON file named by ``VALIDATOR_VOCABULARY_FILE`` can
override any table so the validator works for another framework.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from primus_docgen.config import get_settings
from primus_docgen.models.enums import Severity

logger = logging.getLogger(__name__)

_FLAG_NAMES = {
    "IGNORECASE": re.IGNORECASE,
    "MULTILINE": re.MULTILINE,
    "DOTALL": re.DOTALL,
}


# ── Config models ────────────────────────────────────────

class PatternRule(BaseModel):
    """One regex with its reporting metadata."""
    pattern: str
    description: str = ""
    severity: Severity = Severity.CRITICAL
    flags: list[str] = ["IGNORECASE"]
    meta_commentary: bool = False  # checked before sanitizing; a hit forces a retry

    def compile(self) -> re.Pattern[str]:
        value = 0
        for name in self.flags:
            value |= _FLAG_NAMES[name.upper()]
        return re.compile(self.pattern, value)


class SectionTitle(BaseModel):
    number: int
    title: str
    alternates: list[str] = []

    @property
    def all_titles(self) -> list[str]:
        return [self.title, *self.alternates]


def _rule(pattern: str, description: str, severity: str = "CRITICAL", flags=("IGNORECASE",), meta=False) -> PatternRule:
    return PatternRule(
        pattern=pattern,
        description=description,
        severity=Severity(severity),
        flags=list(flags),
        meta_commentary=meta,
    )


def _markers(*patterns: str) -> list[PatternRule]:
    return [PatternRule(pattern=p) for p in patterns]


class ValidatorVocabulary(BaseModel):
    """All validator pattern tables; defaults are the Primus GFS v4.0 vocabulary."""

    forbidden_patterns: list[PatternRule] = [
        # Bracketed meta-comments
        _rule(r"\[\.{3,}\]", "Ellipsis brackets indicating omitted content", meta=True),
        _rule(r"\[…\]", "Ellipsis character in brackets", meta=True),
        _rule(r"\[continued\s+as\s+per\s+template\]", "Continuation placeholder"),
        _rule(r"\[the\s+full\s+document\s+would\s+continue\]", "Document continuation note"),
        _rule(r"\[similar\s+to\s+above\]", "Reference to previous content"),
        _rule(r"\[repeat\s+for\s+each\]", "Repetition instruction"),
        _rule(r"\[insert\s+\w+\s+here\]", "Insertion instruction", meta=True),
        _rule(r"\[fill\s+in\]", "Fill-in instruction"),
        _rule(r"\[tbd\]", "To be determined placeholder", "HIGH"),
        _rule(r"\[todo\]", "Todo placeholder", "HIGH"),
        _rule(r"\[pending\]", "Pending status indicator", "HIGH"),
        _rule(r"\[see\s+section\s+\d+\]", "Cross-reference instruction", "MEDIUM"),
        # Compliance auto-correction announcements
        _rule(r"COMPLIANCE\s+AUTO[-\s]?CORRECTION", "Auto-correction announcement", meta=True),
        _rule(r"\[COMPLIANCE\s+AUTO\]", "Bracketed compliance message", meta=True),
        _rule(r"missing\s+requirement\(s\)\s+added", "Missing requirement notice"),
        _rule(r"AUTO[-\s]?INJECTED", "Auto-injection notice"),
        # Model meta-commentary
        _rule(r"would\s+you\s+like\s+me\s+to", "LLM asking for permission", meta=True),
        _rule(r"I\s+can\s+help\s+you", "LLM offering help", meta=True),
        _rule(r"I\s+have\s+generated", "LLM describing its action", meta=True),
        _rule(r"I\s+will\s+now\s+create", "LLM announcing creation", meta=True),
        _rule(r"Here\s+is\s+the\s+(complete|final|revised)", "LLM presenting output", meta=True),
        _rule(r"The\s+following\s+document", "LLM introducing document", "HIGH"),
        _rule(r"This\s+document\s+has\s+been\s+generated", "Generation statement"),
        _rule(r"key\s+integrations\s+include", "LLM listing integrations", meta=True),
        _rule(r"note\s+that\s+this\s+document", "LLM adding notes about document", "HIGH"),
        # Explanations instead of content
        _rule(r"EXPLANATION:", "Explanation header"),
        _rule(r"Note:\s*The\s+SOP", "Notes about the SOP"),
        _rule(r"Important:\s*This", "Important notices about generation", "HIGH"),
        _rule(r"Please\s+note:", "Notice to reader", "HIGH"),
        # Template / variable references
        _rule(r"\{\{[^}]+\}\}", "Unfilled template variable", "HIGH", flags=()),
        _rule(r"\$\{[^}]+\}", "JavaScript template literal", "HIGH", flags=()),
        _rule(r"%[A-Z_]+%", "Environment variable placeholder", "MEDIUM", flags=()),
        # Content about content
        _rule(r"The\s+full\s+document\s+would\s+include", "Description of what should be included"),
        _rule(r"Additional\s+sections\s+would\s+cover", "Description of omitted sections"),
        _rule(r"This\s+section\s+should\s+contain", "Description instead of content"),
        _rule(r"Below\s+is\s+a\s+comprehensive", "LLM introducing comprehensive document", "HIGH"),
        # First-person references
        _rule(r"^I\s+(have|will|am|should)\s+", "First-person statement", flags=("IGNORECASE", "MULTILINE")),
        _rule(r"\bwe\s+can\s+see\s+that", "Analytical first-person plural", "HIGH"),
        # Post-signature content
        _rule(r"CHEMICAL\s+COMPLIANCE:", "Post-signature compliance content"),
        _rule(r"PEST\s+CONTROL\s+COMPLIANCE:", "Post-signature pest compliance"),
        _rule(r"PEST\s+COMPLIANCE:", "Post-signature pest compliance short form"),
        _rule(r"DOCUMENT\s+CONTROL\s+COMPLIANCE:", "Post-signature document control compliance"),
        _rule(r"GLASS.*COMPLIANCE:", "Post-signature glass compliance"),
        _rule(r"HACCP\s+COMPLIANCE:", "Post-signature HACCP compliance"),
        _rule(r"TRACEABILITY\s+COMPLIANCE:", "Post-signature traceability compliance"),
        _rule(r"ALLERGEN\s+COMPLIANCE:", "Post-signature allergen compliance"),
        _rule(r"PROGRAM\s+COMPLIANCE", "Post-signature program compliance"),
        _rule(r"COMPLIANCE\s+SUMMARY", "Post-signature compliance summary"),
        _rule(r"ADDITIONAL\s+COMPLIANCE", "Post-signature additional compliance"),
        _rule(r"APPENDIX\s+[A-Z]", "Appendix after signatures"),
        _rule(r"NOTES:\s*$", "Notes section after signatures", "HIGH", flags=("IGNORECASE", "MULTILINE")),
        _rule(r"ADDITIONAL\s+NOTES", "Additional notes after signatures", "HIGH"),
    ]

    suspicious_patterns: list[PatternRule] = [
        _rule(r'e\.g\.,\s*"?[A-Z][^"]*"?', "Example given instead of actual value", "MEDIUM", flags=()),
        _rule(r"such\s+as\s+\[", 'Bracket after "such as"', "MEDIUM"),
        _rule(r"including\s+but\s+not\s+limited\s+to", "Generic open-ended list", "MEDIUM"),
        _rule(r"\(as\s+applicable\)", "Conditional applicability phrase", "MEDIUM"),
        _rule(r"\(if\s+any\)", "Conditional existence phrase", "MEDIUM"),
        _rule(r"per\s+facility\s+procedures", "Vague reference to other procedures", "MEDIUM"),
        _rule(r"N/A", "Not applicable markers", "MEDIUM", flags=()),
    ]

    mandatory_sections: list[SectionTitle] = [
        SectionTitle(number=1, title="Title & Document Control", alternates=["Document Control", "Title"]),
        SectionTitle(number=2, title="Purpose / Objective", alternates=["Purpose", "Objective"]),
        SectionTitle(number=3, title="Scope"),
        SectionTitle(number=4, title="Definitions & Abbreviations", alternates=["Definitions", "Abbreviations"]),
        SectionTitle(number=5, title="Roles & Responsibilities", alternates=["Responsibilities", "Roles"]),
        SectionTitle(
            number=6,
            title="Prerequisites & Reference Documents",
            alternates=["Prerequisites", "Reference Documents", "References"],
        ),
        SectionTitle(number=7, title="Hazard / Risk Analysis", alternates=["Hazard Analysis", "Risk Analysis"]),
        SectionTitle(number=8, title="Procedures"),
        SectionTitle(number=9, title="Monitoring Plan", alternates=["Monitoring"]),
        SectionTitle(
            number=10,
            title="Verification & Validation Activities",
            alternates=["Verification", "Validation Activities"],
        ),
        SectionTitle(
            number=11,
            title="Corrective & Preventive Action",
            alternates=["Corrective Action", "Preventive Action", "CAPA Protocol"],
        ),
        SectionTitle(number=12, title="Traceability & Recall Elements", alternates=["Traceability", "Recall Elements"]),
        SectionTitle(number=13, title="Record Retention & Document Control", alternates=["Record Retention", "Records"]),
        SectionTitle(number=14, title="Compliance Crosswalk", alternates=["Crosswalk"]),
        SectionTitle(
            number=15,
            title="Revision History & Approval Signatures",
            alternates=["Revision History", "Approval Signatures"],
        ),
    ]

    # Full "Approved By: ... Date: ..." line; the document is cut at the end of it.
    signature_block_pattern: PatternRule = PatternRule(
        pattern=r"Approved\s+By:[ \t_]*[^\n]*?\s*Date:[^\n]*",
        description="Final approval signature line",
    )

    # Content after the last signature that justifies truncation.
    post_signature_cut_patterns: list[PatternRule] = _markers(
        r"CHEMICAL\s+COMPLIANCE:",
        r"PEST\s+(CONTROL\s+)?COMPLIANCE:",
        r"DOCUMENT\s+CONTROL\s+COMPLIANCE:",
        r"GLASS.*COMPLIANCE:",
        r"HACCP\s+COMPLIANCE:",
        r"TRACEABILITY\s+COMPLIANCE:",
        r"ALLERGEN\s+COMPLIANCE:",
        r"PROGRAM\s+COMPLIANCE",
        r"COMPLIANCE\s+SUMMARY",
        r"ADDITIONAL\s+COMPLIANCE",
        r"APPENDIX\s+[A-Z]:",
        r"\[COMPLIANCE\s+AUTO",
        r"missing\s+requirement.*added",
    )

    # Content after the last "Approved By:" that counts as contamination.
    post_signature_detect_patterns: list[PatternRule] = _markers(
        r"CHEMICAL\s+COMPLIANCE:",
        r"PEST\s+(CONTROL\s+)?COMPLIANCE:",
        r"DOCUMENT\s+CONTROL\s+COMPLIANCE:",
        r"GLASS.*COMPLIANCE:",
        r"HACCP\s+COMPLIANCE:",
        r"TRACEABILITY\s+COMPLIANCE:",
        r"ALLERGEN\s+COMPLIANCE:",
        r"PROGRAM\s+COMPLIANCE",
        r"COMPLIANCE\s+SUMMARY",
        r"ADDITIONAL\s+COMPLIANCE",
        r"APPENDIX\s+[A-Z]",
        r"ADDITIONAL\s+NOTES",
        r"\n\n[A-Z\s]+REQUIREMENTS:",
        r"\n\n[A-Z\s]+COMPLIANCE:",
    )


# ── Store class ──────────────────────────────────────────

class VocabularyStore:
    """
    Resolves the active vocabulary: defaults overlaid with the optional JSON
    override file.  Compiled patterns are cached per table.
    """

    def __init__(self, override_file: str | None = None):
        self.override_file = override_file if override_file is not None else get_settings().validator_vocabulary_file
        self._vocabulary: ValidatorVocabulary | None = None
        self._cache: dict[str, Any] = {}

    def _load(self) -> ValidatorVocabulary:
        if not self.override_file:
            return ValidatorVocabulary()
        path = Path(self.override_file)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        logger.info(f"[VOCABULARY] Loaded validator vocabulary override from {path} ({', '.join(data)})")
        return ValidatorVocabulary(**data)

    @property
    def vocabulary(self) -> ValidatorVocabulary:
        if self._vocabulary is None:
            self._vocabulary = self._load()
        return self._vocabulary

    def compiled(self, table: str) -> list[tuple[re.Pattern[str], PatternRule]]:
        """Compiled (regex, rule) pairs for one list-valued table."""
        if table not in self._cache:
            rules: list[PatternRule] = getattr(self.vocabulary, table)
            self._cache[table] = [(rule.compile(), rule) for rule in rules]
        return self._cache[table]

    @property
    def signature_block(self) -> re.Pattern[str]:
        if "signature_block" not in self._cache:
            self._cache["signature_block"] = self.vocabulary.signature_block_pattern.compile()
        return self._cache["signature_block"]

    @property
    def mandatory_sections(self) -> list[SectionTitle]:
        return self.vocabulary.mandatory_sections


@lru_cache()
def get_vocabulary_store() -> VocabularyStore:
    """Return the process-wide vocabulary store (singleton)."""
    return VocabularyStore()
