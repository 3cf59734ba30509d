"""
Tests: Spec-driven and enhanced prompt building, token budgets and retry
prompt revision.

Run with:
    pytest primus_docgen/tests/test_prompt_builder.py -v
"""

import pytest

from primus_docgen.exceptions import SpecNotFoundError
from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.generation.prompt_builder import (
    build_enhanced_spec_driven_prompt,
    build_spec_driven_prompt,
    compute_token_limit,
    inject_requirement_guidance,
)
from primus_docgen.generation.structure_builder import build_deterministic_structure, build_requirements_list
from primus_docgen.generation.questions import build_questions_from_spec
from primus_docgen.orchestration.transitions import FEEDBACK_MARKER, next_prompt


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


class TestTokenLimit:
    @pytest.mark.parametrize(
        "count, expected",
        [(0, 25000), (9, 25000), (10, 28000), (14, 28000), (15, 30000), (20, 35000), (40, 35000)],
    )
    def test_tiers(self, count, expected):
        assert compute_token_limit(count, cap=100000) == expected

    def test_clamped_to_provider_cap(self):
        assert compute_token_limit(25, cap=32768) == 32768
        assert compute_token_limit(3, cap=8000) == 8000


class TestSpecDrivenPrompt:
    def test_unmatched_document_raises(self, loader):
        with pytest.raises(SpecNotFoundError):
            build_spec_driven_prompt("5", {}, document_name="Visitor Sign-in Sheet", loader=loader)

    def test_blocks_present(self, loader):
        prompt = build_spec_driven_prompt("5", {"company_name": "Acme Farms"}, sub_module_name="5.12", loader=loader)
        assert "MANDATORY DOCUMENT STRUCTURE (15 SECTIONS):" in prompt
        assert "[5.12.01]" in prompt
        assert "PRIMUS GFS CODE: 5.12" in prompt
        assert '"company_name": "Acme Farms"' in prompt
        # pest comes from the submodule's micro_inject list
        assert "PEST REQUIREMENTS:" in prompt
        assert "Bait stations must be secured" in prompt

    def test_forced_categories_override_spec(self, loader):
        prompt = build_spec_driven_prompt(
            "5", {}, sub_module_name="5.12", force_micro_categories=[], loader=loader
        )
        assert "ADDITIONAL MANDATORY COMPLIANCE REQUIREMENTS:" not in prompt

    def test_optional_requirements_not_listed(self, loader):
        prompt = build_spec_driven_prompt("1", {}, sub_module_name="1.01", loader=loader)
        assert "[1.01.01]" in prompt
        assert "[1.01.04]" not in prompt


class TestEnhancedPrompt:
    ANSWERS = {"company_name": "Acme Farms", "approved_by": "Jane Doe", "requirement_1_01_01": True}

    def test_placement_map_precedes_structure(self, loader):
        questions = build_questions_from_spec("1", sub_module_name="1.01", loader=loader)
        prompt = build_enhanced_spec_driven_prompt(
            "1", self.ANSWERS, questions, sub_module_name="1.01", loader=loader
        )

        placement = prompt.index("MANDATORY ANSWER PLACEMENT")
        guidance = prompt.index("REQUIREMENT-SPECIFIC CONTENT STRUCTURE")
        structure = prompt.index("MANDATORY DOCUMENT STRUCTURE (15 SECTIONS):")
        assert placement < guidance < structure

        assert "1. ### 1.01.01 - (" in prompt
        assert "☐ ### 1.01.01 - header present with content" in prompt
        assert '- company_name: "Acme Farms" → Section 1: "Organization: Acme Farms"' in prompt
        assert '- approved_by: "Jane Doe" → Section 15: "Approved By: Jane Doe Date: __________"' in prompt
        assert '- 1.01.01: "Yes" → Under "### 1.01.01 - ..." in Section 2' in prompt

    def test_no_mappings_returns_base_prompt(self, loader):
        questions = build_questions_from_spec("1", sub_module_name="1.01", loader=loader)
        answers = {"company_name": "Acme Farms"}
        enhanced = build_enhanced_spec_driven_prompt("1", answers, questions, sub_module_name="1.01", loader=loader)
        assert enhanced == build_spec_driven_prompt("1", answers, sub_module_name="1.01", loader=loader)

    def test_guidance_appended_without_marker(self):
        assert inject_requirement_guidance("BASE", "MAP", "GUIDE") == "BASE\n\nGUIDE"
        assert inject_requirement_guidance("A\nSTRUCTURE:\nB", "MAP", "GUIDE") == "A\nMAP\n\nGUIDE\n\nSTRUCTURE:\nB"


class TestRetryPrompt:
    def test_feedback_appended_after_marker(self):
        revised = next_prompt("BASE PROMPT", "Missing header 1.01.01")
        assert revised == f"BASE PROMPT{FEEDBACK_MARKER}\nMissing header 1.01.01\n"

    def test_previous_feedback_replaced(self):
        first = next_prompt("BASE PROMPT", "first round")
        second = next_prompt(first, "second round")
        assert "first round" not in second
        assert second.count("CORRECTIONS REQUIRED FROM PREVIOUS ATTEMPT") == 1
        assert second.startswith("BASE PROMPT")

    def test_empty_feedback_restores_base(self):
        assert next_prompt(next_prompt("BASE", "x"), "  ") == "BASE"


class TestDeterministicStructure:
    def test_skeleton_has_every_section(self, loader):
        structure = build_deterministic_structure("5", sub_module_name="5.12", loader=loader)
        assert "Submodule: 5.12 - Pest Control Program" in structure
        assert "8. PROCEDURES" in structure
        assert "15. REVISION HISTORY & APPROVAL SIGNATURES" in structure
        assert structure.count("[Generate comprehensive content for this section now]") == 15
        assert "- [5.12.01] " in structure
        assert "- [pest/pest_01] Bait stations must be secured" in structure

    def test_answers_fill_title_block(self, loader):
        structure = build_deterministic_structure(
            "1", sub_module_name="1.01", answers={"approved_by": "Jane Doe"}, loader=loader
        )
        assert "- Approved By: Jane Doe" in structure

    def test_requirements_list(self, loader):
        listing = build_requirements_list("1", sub_module_name="1.01", loader=loader)
        assert listing.startswith("MODULE: ")
        assert "SUBMODULE: 1.01 - " in listing
        assert "[1.01.01]" in listing
        assert "[1.01.04]" not in listing
