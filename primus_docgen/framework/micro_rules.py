"""
Micro-rule selector: decides which micro-rule categories apply to a document.

Pure keyword classification over the submodule and document names, so a
pest program never receives chemical-control phrasing and vice versa.
"""

from __future__ import annotations

from typing import Optional

from primus_docgen.models.enums import MicroRuleCategory
from primus_docgen.models.schemas import ModuleContext

_DISPLAY_NAMES = {
    MicroRuleCategory.PEST: "Pest Control",
    MicroRuleCategory.CHEMICAL: "Chemical Control",
    MicroRuleCategory.GLASS_BRITTLE_PLASTIC: "Glass & Brittle Plastic Control",
    MicroRuleCategory.DOCUMENT_CONTROL: "Document Control",
    MicroRuleCategory.HACCP: "HACCP",
    MicroRuleCategory.TRACEABILITY: "Traceability",
    MicroRuleCategory.ALLERGEN: "Allergen Management",
}

CHEMICAL_KEYWORDS = ("chemical", "5.11", "sanitizer", "inventory", "cleaning", "sds", "msds", "hazardous material")
PEST_KEYWORDS = ("pest", "5.12", "rodent", "trap", "bait", "exterminator", "ipm", "insect")
GLASS_KEYWORDS = ("glass", "brittle", "5.04", "foreign material", "breakage", "plastic control")
DOCUMENT_CONTROL_KEYWORDS = ("document", "1.02", "record", "control", "version", "obsolete")
HACCP_KEYWORDS = ("haccp", "ccp", "critical control", "hazard analysis")
TRACEABILITY_KEYWORDS = ("traceability", "recall", "lot code", "batch")
ALLERGEN_KEYWORDS = ("allergen", "allergy", "cross-contact", "big 8", "big 9")

TRACEABILITY_MODULES = ("2", "4", "6")


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    return any(kw in text for kw in keywords)


def detect_relevant_micro_rule_groups(
    context: Optional[ModuleContext] = None,
    document_name: Optional[str] = None,
) -> list[str]:
    """
    Return the micro-rule categories relevant to a document.

    Document control only applies in module 1; module 6 always gets HACCP;
    modules 2, 4 and 6 always get traceability.
    """
    module_number = context.module_number if context else "1"
    sub_module_name = (context.sub_module_name if context else None) or ""
    text = f"{sub_module_name} {document_name or ''}".lower()

    groups: list[str] = []

    if _contains_any(text, CHEMICAL_KEYWORDS):
        groups.append(MicroRuleCategory.CHEMICAL.value)

    if _contains_any(text, PEST_KEYWORDS):
        groups.append(MicroRuleCategory.PEST.value)

    if _contains_any(text, GLASS_KEYWORDS):
        groups.append(MicroRuleCategory.GLASS_BRITTLE_PLASTIC.value)

    if module_number == "1" and _contains_any(text, DOCUMENT_CONTROL_KEYWORDS):
        groups.append(MicroRuleCategory.DOCUMENT_CONTROL.value)

    if module_number == "6" or _contains_any(text, HACCP_KEYWORDS):
        groups.append(MicroRuleCategory.HACCP.value)

    if (
        _contains_any(text, TRACEABILITY_KEYWORDS)
        or (module_number == "1" and "trace" in text)
        or module_number in TRACEABILITY_MODULES
    ):
        groups.append(MicroRuleCategory.TRACEABILITY.value)

    if _contains_any(text, ALLERGEN_KEYWORDS):
        groups.append(MicroRuleCategory.ALLERGEN.value)

    return list(dict.fromkeys(groups))


def get_category_display_name(category: str) -> str:
    try:
        return _DISPLAY_NAMES[MicroRuleCategory(category)]
    except ValueError:
        return category.replace("_", " ").title()


def validate_micro_rule_groups(groups: list[str], document_name: Optional[str] = None) -> tuple[bool, list[str]]:
    """Flag suspicious category combinations. Returns (valid, warnings)."""
    warnings: list[str] = []

    if "pest" in groups and "chemical" in groups:
        if document_name and "facility" not in document_name.lower():
            warnings.append(
                "Both pest and chemical rules detected. Ensure document covers both topics "
                "or split into separate documents."
            )

    if not groups and document_name:
        warnings.append(
            "No specific micro-rule groups detected. Document will only use base checklist requirements."
        )

    return len(warnings) == 0, warnings
