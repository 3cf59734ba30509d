"""
Tests: Micro-rule group detection.

Run with:
    pytest primus_docgen/tests/test_micro_rules.py -v
"""

import pytest

from primus_docgen.framework.micro_rules import (
    detect_relevant_micro_rule_groups,
    get_category_display_name,
    validate_micro_rule_groups,
)
from primus_docgen.models.schemas import ModuleContext


def _groups(module_number="5", sub_module_name=None, document_name=None):
    context = ModuleContext(module_number=module_number, sub_module_name=sub_module_name)
    return detect_relevant_micro_rule_groups(context, document_name)


class TestDetection:
    @pytest.mark.parametrize("module_number", ["1", "2", "3", "4", "5", "6", "7"])
    @pytest.mark.parametrize("text", ["Pest Control Program", "pest sighting log", "IPM and pest trend review"])
    def test_pest_always_detected(self, module_number, text):
        assert "pest" in _groups(module_number, document_name=text)

    @pytest.mark.parametrize("module_number", ["2", "3", "4", "5", "7"])
    def test_unrelated_text_gives_empty_or_traceability_only(self, module_number):
        groups = _groups(module_number, sub_module_name="Visitor Policy", document_name="Employee Handbook")
        assert set(groups) <= {"traceability"}

    def test_traceability_forced_for_farm_modules(self):
        assert _groups("2", document_name="Employee Handbook") == ["traceability"]
        assert _groups("3", document_name="Employee Handbook") == []

    def test_document_control_only_in_module_1(self):
        assert "document_control" in _groups("1", document_name="Document Control Procedure")
        assert "document_control" not in _groups("5", document_name="Document Control Procedure")

    def test_module_6_always_gets_haccp(self):
        assert "haccp" in _groups("6", document_name="Employee Handbook")

    def test_chemical_keywords(self):
        assert _groups("5", sub_module_name="5.11", document_name="Sanitizer Inventory") == ["chemical"]

    def test_results_have_no_duplicates(self):
        groups = _groups("6", document_name="HACCP traceability and recall plan")
        assert len(groups) == len(set(groups))

    def test_defaults_to_module_1_without_context(self):
        assert "document_control" in detect_relevant_micro_rule_groups(None, "Record Control")


class TestHelpers:
    def test_display_name(self):
        assert get_category_display_name("glass_brittle_plastic") == "Glass & Brittle Plastic Control"
        assert get_category_display_name("unknown_group") == "Unknown Group"

    def test_pest_with_chemical_is_flagged(self):
        valid, warnings = validate_micro_rule_groups(["pest", "chemical"], "Pest and Chemical Program")
        assert valid is False
        assert warnings

    def test_single_group_is_valid(self):
        assert validate_micro_rule_groups(["pest"], "Pest Control Program") == (True, [])
