"""
Tests: Requirement mapping and answer-presence validation.

Run with:
    pytest primus_docgen/tests/test_requirements.py -v
"""

import random
from datetime import date

import pytest

from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.generation.questions import build_questions_from_spec
from primus_docgen.generation.requirements import (
    answer_near_header,
    determine_target_section,
    extract_requirement_code,
    format_answer_for_display,
    map_answers_to_requirements,
    validate_answers_present,
)
from primus_docgen.models.schemas import QuestionItem


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


class TestRequirementCodes:
    @pytest.mark.parametrize(
        "question_id, code",
        [
            ("requirement_1_01_01", "1.01.01"),
            ("requirement_2_03_04b", "2.03.04b"),
            ("requirement_5_12_2", "5.12.02"),
            ("requirement_4_5_1A", "4.05.01a"),
        ],
    )
    def test_canonical_form(self, question_id, code):
        assert extract_requirement_code(question_id) == code

    def test_non_requirement_ids(self):
        assert extract_requirement_code("company_name") is None
        assert extract_requirement_code("monitoring_frequency") is None


class TestTargetSection:
    @pytest.mark.parametrize(
        "text, section",
        [
            ("A documented food safety policy must be established", 2),
            ("The operation shall have a policy to monitor pests", 2),
            ("Monitoring frequency for bait stations", 9),
            ("Records must be retained for two years", 13),
            ("Verify the calibration of thermometers", 10),
            ("Corrective actions for deviations", 11),
            ("Hazard assessment of adjacent land", 7),
            ("Responsibility for the program is assigned", 5),
            ("Lot identification at harvest", 12),
            ("Toilets are available to workers", 8),
        ],
    )
    def test_keyword_cascade(self, text, section):
        assert determine_target_section(text) == section


class TestAnswerFormatting:
    def test_values(self):
        assert format_answer_for_display(True) == "Yes"
        assert format_answer_for_display(False) == "No"
        assert format_answer_for_display(date(2024, 1, 1)) == "2024-01-01"
        assert format_answer_for_display(None) == "To be determined"
        assert format_answer_for_display(3) == "3"
        assert format_answer_for_display("Acme Farms") == "Acme Farms"


class TestMapping:
    def test_sorted_regardless_of_input_order(self, loader):
        questions = build_questions_from_spec("4", sub_module_name="4.05", loader=loader)
        answers = {q.id: "Yes, daily" for q in questions if q.id.startswith("requirement_")}

        rng = random.Random(7)
        for _ in range(5):
            shuffled_q = questions[:]
            rng.shuffle(shuffled_q)
            items = list(answers.items())
            rng.shuffle(items)
            mappings = map_answers_to_requirements(
                dict(items), shuffled_q, "4", sub_module_name="4.05", loader=loader
            )
            assert [m.code for m in mappings] == ["4.05.01", "4.05.01a", "4.05.02"]

    def test_unanswered_and_core_questions_are_skipped(self, loader):
        questions = build_questions_from_spec("1", sub_module_name="1.01", loader=loader)
        answers = {"company_name": "Acme Farms", "requirement_1_01_01": True}
        mappings = map_answers_to_requirements(answers, questions, "1", sub_module_name="1.01", loader=loader)
        assert len(mappings) == 1
        assert mappings[0].code == "1.01.01"
        assert mappings[0].section_number == 2
        assert "food safety policy" in mappings[0].requirement_text

    def test_question_text_used_without_spec(self, loader):
        questions = [QuestionItem(id="requirement_3_01_01", question="Is the grow room monitored?")]
        mappings = map_answers_to_requirements(
            {"requirement_3_01_01": True}, questions, "3", sub_module_name="3.01", loader=loader
        )
        assert mappings[0].requirement_text == "Is the grow room monitored?"
        assert mappings[0].section_number == 9


class TestAnswerPresence:
    QUESTIONS = [
        QuestionItem(id="company_name", question="Company?"),
        QuestionItem(id="approved_by", question="Approver?"),
        QuestionItem(id="requirement_1_01_01", question="Policy?"),
    ]
    ANSWERS = {"company_name": "Acme Farms", "approved_by": "Jane Doe", "requirement_1_01_01": True}

    def _doc(self, signer="Jane Doe", header=True):
        parts = ["1. TITLE & DOCUMENT CONTROL", "Organization: Acme Farms", ""]
        if header:
            parts += ["### 1.01.01 - Food safety policy", "Answer: Yes. The policy is signed annually.", ""]
        parts += ["15. REVISION HISTORY & APPROVAL SIGNATURES", f"Approved By: {signer} Date: 2024-01-01"]
        return "\n".join(parts)

    def test_all_present(self):
        result = validate_answers_present(self._doc(), self.ANSWERS, self.QUESTIONS)
        assert result.missing == []
        assert result.found == ["company_name", "approved_by"]
        assert result.found_requirement_headers == ["1.01.01"]

    def test_approved_by_must_be_in_section_15(self):
        doc = "Approved by Jane Doe\n" + self._doc(signer="________")
        result = validate_answers_present(doc, self.ANSWERS, self.QUESTIONS)
        assert result.missing == ["approved_by"]

    def test_missing_header(self):
        result = validate_answers_present(self._doc(header=False), self.ANSWERS, self.QUESTIONS)
        assert result.missing_requirement_headers == ["1.01.01"]

    def test_core_fields_only(self):
        result = validate_answers_present(self._doc(header=False), self.ANSWERS, self.QUESTIONS, core_fields_only=True)
        assert result.missing_requirement_headers == []

    def test_answer_near_header(self):
        doc = self._doc()
        assert answer_near_header(doc, "1.01.01", True, 500)
        far = doc.replace("Answer: Yes.", "Answer:" + " filler" * 200 + " Yes.")
        assert not answer_near_header(far, "1.01.01", True, 500)

    def test_distant_answer_is_recorded(self):
        far = self._doc().replace("Answer: Yes.", "Answer:" + " filler" * 200 + " Yes.")
        result = validate_answers_present(far, self.ANSWERS, self.QUESTIONS)
        assert result.found_requirement_headers == ["1.01.01"]
        assert result.answers_not_near_header == ["1.01.01"]
        assert validate_answers_present(self._doc(), self.ANSWERS, self.QUESTIONS).answers_not_near_header == []
