"""
Tests: Question generation from specifications and the model fallback.

The model is never called for real: ``llm_text_call`` is monkeypatched.

Run with:
    pytest primus_docgen/tests/test_questions.py -v
"""

import json

import pytest

from primus_docgen.exceptions import QuestionExtractionError
from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.generation.questions import (
    CORE_QUESTIONS,
    build_questions_from_spec,
    detect_document_type,
    extract_questions,
    generate_question_from_requirement,
    requirement_question_id,
    safe_extract_json_array,
    validate_questions,
)
from primus_docgen.models.enums import QuestionType
from primus_docgen.models.schemas import ModuleContext, QuestionItem


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


class TestSpecQuestions:
    def test_core_questions_come_first(self, loader):
        questions = build_questions_from_spec("1", sub_module_name="1.01", loader=loader)
        assert [q.id for q in questions[:6]] == [q.id for q in CORE_QUESTIONS]
        assert [q.id for q in questions[6:]] == [
            "requirement_1_01_01",
            "requirement_1_01_02",
            "requirement_1_01_03",
            "requirement_1_01_04",
        ]

    def test_legacy_requirement_hint(self, loader):
        questions = {q.id: q for q in build_questions_from_spec("1", sub_module_name="1.01", loader=loader)}
        required = questions["requirement_1_01_01"]
        assert required.hint.startswith("REQUIRED - 1.01.01: ")
        assert required.type == QuestionType.BOOLEAN
        assert questions["requirement_1_01_04"].hint.startswith("OPTIONAL - ")

    def test_new_format_requirement_uses_spec_question(self, loader):
        questions = {q.id: q for q in build_questions_from_spec("4", sub_module_name="4.05", loader=loader)}
        q = questions["requirement_4_05_01a"]
        assert q.question.startswith("Are the facilities serviced")
        assert q.hint == "Primus GFS 4.05.01a - 10 points"

    def test_unknown_submodule_yields_core_only(self, loader):
        questions = build_questions_from_spec("7", document_name="Visitor Log", loader=loader)
        assert len(questions) == len(CORE_QUESTIONS)

    def test_question_wording(self):
        assert generate_question_from_requirement("The program must be documented") == "Is The program documented?"
        assert requirement_question_id("2.03.04b") == "requirement_2_03_04b"


class TestValidation:
    def test_orders_core_then_extras(self):
        raw = [
            QuestionItem(id="monitoring_frequency", question="How often?"),
            QuestionItem(id="approved_by", question="Who?"),
            QuestionItem(id="company_name", question="Company?"),
            QuestionItem(id="capa_owner", question="Owner?"),
        ]
        assert [q.id for q in validate_questions(raw)] == [
            "company_name",
            "approved_by",
            "capa_owner",
            "monitoring_frequency",
        ]

    def test_duplicate_ids_rejected(self):
        raw = [QuestionItem(id="company_name", question="A?"), QuestionItem(id="company_name", question="B?")]
        with pytest.raises(QuestionExtractionError, match="Duplicate id"):
            validate_questions(raw)

    def test_json_array_extraction(self):
        assert safe_extract_json_array('  [{"id": "x"}] trailing') == '[{"id": "x"}]'
        with pytest.raises(QuestionExtractionError):
            safe_extract_json_array("Here are the questions: []")


class TestExtraction:
    def test_spec_questions_skip_the_model(self, loader, monkeypatch):
        def _boom(*args, **kwargs):
            raise AssertionError("model must not be called")

        monkeypatch.setattr("primus_docgen.generation.questions.llm_text_call", _boom)
        questions = extract_questions("", ModuleContext(module_number="5", sub_module_name="5.12"), loader=loader)
        assert any(q.id.startswith("requirement_5_12_") for q in questions)

    def test_model_fallback_parses_and_orders(self, loader, monkeypatch):
        reply = json.dumps(
            [
                {"id": "monitoring_frequency", "question": "How often are grow rooms checked?", "type": "text"},
                {"id": "company_name", "question": "What is the company name?", "type": "text"},
            ]
        )
        calls = []

        def _fake(prompt, max_tokens=None):
            calls.append(prompt)
            return reply + "\n"

        monkeypatch.setattr("primus_docgen.generation.questions.llm_text_call", _fake)
        questions = extract_questions(
            "Grow room template {{monitoring_frequency}}",
            ModuleContext(module_number="3"),
            document_name="Grow Room SOP",
            loader=loader,
        )
        assert [q.id for q in questions] == ["company_name", "monitoring_frequency"]
        assert "<<<BEGIN_TEMPLATE>>>" in calls[0]
        assert "3.03.01" in calls[0]

    def test_model_prose_is_rejected(self, loader, monkeypatch):
        monkeypatch.setattr(
            "primus_docgen.generation.questions.llm_text_call",
            lambda prompt, max_tokens=None: "Sure! Here are the questions.",
        )
        with pytest.raises(QuestionExtractionError):
            extract_questions("template", ModuleContext(module_number="3"), loader=loader)


class TestDocumentType:
    def test_policy_vs_procedure(self):
        assert "Food Safety Policy" in detect_document_type("Food Safety Policy")
        assert "Standard Operating Procedure" in detect_document_type(
            "Pest Control Program", ModuleContext(module_number="5")
        )
        assert "Form/Record Template" in detect_document_type("Visitor Log")
