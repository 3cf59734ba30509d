"""
Tests: Framework loader — module specs, submodule resolution, nested
aggregation, checklists, micro-rules and templates.

Run with:
    pytest primus_docgen/tests/test_loader.py -v
"""

import pytest

from primus_docgen.exceptions import SpecNotFoundError
from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.validation.output_validator import validate_section_structure


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


class TestModuleSpecs:
    @pytest.mark.parametrize("module_number", ["1", "2", "3", "4", "5", "6", "7"])
    def test_structure_template_sections_are_recognized(self, loader, module_number):
        """Every module's 15 template titles pass the validator's section matcher."""
        spec = loader.load_module_spec(module_number)
        sections = spec.document_structure_template.sections
        assert [s.number for s in sections] == list(range(1, 16))

        text = "\n\n".join(f"{s.number}. {s.title.upper()}\nBody text." for s in sections)
        assert validate_section_structure(text) == []

    def test_unknown_module_raises(self, loader):
        with pytest.raises(SpecNotFoundError):
            loader.load_module_spec("99")

    def test_module_spec_is_cached(self, loader):
        first = loader.load_module_spec("5")
        assert loader.load_module_spec("5") is first
        assert loader.cache.stats()["module_specs"] == 1


class TestSubmoduleResolution:
    def test_resolves_by_code(self, loader):
        spec = loader.find_submodule_spec_by_name("5", sub_module_name="5.12")
        assert spec is not None
        assert spec.code == "5.12"

    def test_resolves_by_alias(self, loader):
        spec = loader.find_submodule_spec_by_name("1", document_name="Document Control Procedure")
        assert spec is not None
        assert spec.code == "1.02"

    def test_resolves_by_name_words(self, loader):
        spec = loader.find_submodule_spec_by_name("5", sub_module_name="Chemical Control")
        assert spec is not None
        assert spec.code == "5.11"

    def test_unmatched_name_returns_none(self, loader):
        assert loader.find_submodule_spec_by_name("5", document_name="Visitor Sign-in Sheet") is None

    def test_missing_spec_file_returns_none(self, loader):
        # 3.01 is listed in the module but has no spec file
        assert loader.find_submodule_spec_by_name("3", sub_module_name="3.01") is None

    def test_resolves_sub_submodule_code(self, loader):
        spec = loader.find_submodule_spec_by_name("4", document_name="4.05.01 Toilet Facilities")
        assert spec is not None
        assert spec.code == "4.05.01"
        assert [r.code for r in spec.requirements] == ["4.05.01", "4.05.01a"]


class TestSubSubmoduleAggregation:
    def test_folder_is_aggregated_and_sorted(self, loader):
        spec = loader.load_submodule_spec("4", "4.05")
        assert spec.has_sub_submodules is True
        assert spec.title == "Harvest Worker Hygiene"
        assert [r.code for r in spec.requirements] == ["4.05.01", "4.05.01a", "4.05.02"]

    def test_capa_and_traceability_are_deduplicated(self, loader):
        spec = loader.load_submodule_spec("4", "4.05")
        assert spec.capa_inject.count("Missing handwashing supplies stop harvest until restocked") == 1
        assert "Untrained workers are removed from harvest until trained" in spec.capa_inject
        assert len(spec.traceability_inject) == 2

    def test_new_format_requirements_carry_points(self, loader):
        spec = loader.load_submodule_spec("4", "4.05")
        first = spec.requirements[0]
        assert first.is_legacy_format is False
        assert first.total_points == 15


class TestChecklistsAndMicroRules:
    def test_checklist_requirements_flatten_sections(self, loader):
        codes = [r.code for r in loader.get_all_requirements("5")]
        assert "5.12.01" in codes
        assert codes == sorted(codes)

    def test_mandatory_filter(self, loader):
        mandatory = loader.get_mandatory_requirements("1")
        assert all(r.mandatory for r in mandatory)
        assert "1.02.03" not in [r.code for r in mandatory]

    def test_keyword_search(self, loader):
        found = loader.find_requirements_by_keyword("5", "rodent")
        assert [r.code for r in found] == ["5.12.01"]

    def test_missing_micro_rule_file_is_empty(self, loader):
        rules = loader.load_micro_rules("allergen")
        assert rules.rules == {}

    def test_relevant_micro_rules_skip_empty_sets(self, loader):
        relevant = loader.get_relevant_micro_rules(["pest", "allergen"])
        assert list(relevant) == ["pest"]
        assert "pest_01" in relevant["pest"].rules


class TestTemplates:
    def test_pest_control_document_selects_pest_template(self, loader):
        meta = loader.select_template_metadata("5", document_name="Pest Control Program")
        assert meta is not None
        assert meta.file_path == "module_5_pest.txt"
        assert loader.load_template(meta.file_path).strip()

    def test_food_safety_policy_uses_generic_structure(self, loader):
        assert loader.select_template("1", document_name="Food Safety Policy") is None

    def test_missing_template_raises(self, loader):
        with pytest.raises(SpecNotFoundError):
            loader.load_template("nope.txt")


class TestAccessors:
    def test_document_structure(self, loader):
        structure = loader.get_document_structure("2")
        assert len(structure.sections) == 15

    def test_mandatory_submodule_requirements_skip_optional(self, loader):
        codes = [r.code for r in loader.get_mandatory_submodule_requirements("1", "1.01")]
        assert codes == ["1.01.01", "1.01.02", "1.01.03"]

    def test_micro_inject_categories(self, loader):
        assert loader.get_micro_inject_categories("5", "5.11") == ["chemical"]
        assert loader.get_micro_inject_categories("3", "3.01") == []

    def test_all_checklists_and_micro_rules(self, loader):
        assert sorted(loader.load_all_checklists()) == ["1", "2", "3", "4", "5", "6"]
        rules = loader.load_all_micro_rules()
        assert "allergen" in rules
        assert rules["allergen"].rules == {}
        assert rules["traceability"].rules

    def test_module_templates(self, loader):
        files = [t.file_path for t in loader.get_module_templates("5")]
        assert files == ["module_5_pest.txt", "module_5_chemical.txt"]
        assert loader.get_module_templates("7") == []

    def test_clear_resets_cache(self, loader):
        loader.load_module_spec("1")
        loader.cache.clear()
        assert loader.cache.stats()["module_specs"] == 0
