"""
Tests: End-to-end generation graph with a fake model — acceptance,
post-signature clean-up, retries with feedback and the failure taxonomy.

The model is replaced by monkeypatching ``llm_text_call`` in the graph module.

Run with:
    pytest primus_docgen/tests/test_pipeline.py -v
"""

import json

import pytest

from primus_docgen.exceptions import (
    ForbiddenPatternError,
    IncompleteSectionCountError,
    InsufficientQuestionsError,
    MissingCoreAnswerOrHeaderError,
)
from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.generation.requirements import answer_near_header
from primus_docgen.main import generate_document, run
from primus_docgen.models.enums import AttemptOutcome, FailureReason, GenerationStatus
from primus_docgen.models.schemas import (
    AttemptReport,
    DocumentGenerationOptions,
    DocumentVerification,
    ForbiddenCheckResult,
    ModuleContext,
)
from primus_docgen.orchestration.graph import fill_template, run_generation
from primus_docgen.orchestration.transitions import FEEDBACK_MARKER, decide_attempt, route_after_evaluate
from primus_docgen.utils.hashing import document_hash, generation_inputs_hash
from primus_docgen.validation.vocabulary import ValidatorVocabulary

FILLER = "The Food Safety Manager reviews sanitation records daily and files them in the QA office. "
SIGNATURE = "Approved By: Jane Doe Date: 2024-01-01"
ANSWERS = {"company_name": "Acme Farms", "approved_by": "Jane Doe", "requirement_1_01_01": True}


class FakeLLM:
    """Returns the scripted outputs in order (the last one repeats) and records every call."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.prompts = []
        self.budgets = []

    def __call__(self, prompt, max_tokens=None):
        self.prompts.append(prompt)
        self.budgets.append(max_tokens)
        return self.outputs[min(len(self.prompts), len(self.outputs)) - 1]


def _sop(header=True, sections=15):
    """A plausible Food Safety Policy SOP with the given number of sections."""
    parts = []
    for section in ValidatorVocabulary().mandatory_sections[:sections]:
        body = (FILLER * 6).strip()
        if section.number == 1:
            body = "Organization: Acme Farms\n" + body
        if section.number == 2 and header:
            body = (
                "### 1.01.01 - Food safety policy documented\n\n"
                "**Implementation Status:** Yes\n\n" + body
            )
        if section.number == 15:
            body += "\n" + SIGNATURE
        parts.append(f"{section.number}. {section.title.upper()}\n{body}")
    return "\n\n".join(parts)


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


@pytest.fixture
def fake_llm(monkeypatch):
    def _install(*outputs):
        fake = FakeLLM(*outputs)
        monkeypatch.setattr("primus_docgen.orchestration.graph.llm_text_call", fake)
        return fake

    return _install


def _run(loader, answers=ANSWERS, **extra):
    state = {
        "module_number": "1",
        "sub_module_name": "1.01",
        "document_name": "Food Safety Policy",
        "answers": answers,
        "force_micro_categories": [],
    }
    state.update(extra)
    return run_generation(state, loader=loader)


class TestAcceptance:
    def test_first_attempt_accepted(self, loader, fake_llm):
        fake = fake_llm(_sop())
        state = _run(loader)

        assert state.status == GenerationStatus.ACCEPTED
        assert state.attempt == 1
        assert state.final_document == _sop()
        assert [m.code for m in state.mappings] == ["1.01.01"]
        assert fake.budgets == [25000]
        assert "### 1.01.01 -" in fake.prompts[0]

    def test_answers_land_where_expected(self, loader, fake_llm):
        fake_llm(_sop())
        state = _run(loader)
        document = state.final_document

        section_1, rest = document.split("2. PURPOSE / OBJECTIVE", 1)
        section_15 = rest.split("15. REVISION HISTORY & APPROVAL SIGNATURES", 1)[1]
        assert "Acme Farms" in section_1
        assert "Jane Doe" in section_15
        assert answer_near_header(document, "1.01.01", True, 500)
        assert state.last_report.answers.answers_not_near_header == []

    def test_compliance_summary_after_signature_is_truncated(self, loader, fake_llm):
        fake_llm(_sop() + "\n\nCOMPLIANCE SUMMARY\nScore: 95/100")
        state = _run(loader)

        assert state.status == GenerationStatus.ACCEPTED
        assert state.final_document.endswith(SIGNATURE)
        assert "COMPLIANCE SUMMARY" not in state.final_document

    def test_micro_rules_are_inserted_before_monitoring(self, loader, fake_llm):
        fake_llm(_sop())
        state = _run(loader, force_micro_categories=["pest"])

        procedures = state.final_document.split("9. MONITORING PLAN")[0]
        assert "- Bait stations must be secured" in procedures
        assert state.micro_categories == ["pest"]

    def test_generate_document_result(self, loader, fake_llm):
        fake_llm(_sop())
        result = generate_document(
            DocumentGenerationOptions(
                module_number="1",
                sub_module_name="1.01",
                document_name="Food Safety Policy",
                answers=ANSWERS,
                force_micro_categories=[],
            ),
            loader=loader,
        )

        assert result.submodule_code == "1.01"
        assert result.requirements_count == 1
        assert result.validation.valid is True
        assert result.validation.missing_requirements == []
        assert result.validation.answers_not_near_header == []
        assert result.metadata.attempts == 1
        assert len(result.metadata.content_hash) == 64
        assert result.metadata.inputs_hash == generation_inputs_hash("1", "1.01", "Food Safety Policy", ANSWERS)
        assert 0 <= result.compliance_score <= 100


class TestRetries:
    def test_meta_commentary_retried_with_feedback(self, loader, fake_llm):
        fake = fake_llm("Here is the complete SOP you asked for.\n\n" + _sop(), _sop())
        state = _run(loader)

        assert state.status == GenerationStatus.ACCEPTED
        assert state.attempt == 2
        assert state.history[0].reason == FailureReason.FORBIDDEN_PATTERN
        assert FEEDBACK_MARKER not in fake.prompts[0]
        assert FEEDBACK_MARKER in fake.prompts[1]
        assert "FORBIDDEN META-COMMENTARY DETECTED" in fake.prompts[1]
        assert "LLM presenting output" in fake.prompts[1]

    def test_missing_header_retried_with_feedback(self, loader, fake_llm):
        fake = fake_llm(_sop(header=False), _sop())
        state = _run(loader)

        assert state.attempt == 2
        assert state.history[0].outcome == AttemptOutcome.RETRY
        assert 'Missing header "### 1.01.01 - ' in fake.prompts[1]
        assert 'with answer "Yes"' in fake.prompts[1]

    def test_only_latest_feedback_kept(self, loader, fake_llm):
        fake = fake_llm("Would you like me to continue?\n" + _sop(), _sop(header=False), _sop())
        state = _run(loader)

        assert state.attempt == 3
        assert "FORBIDDEN META-COMMENTARY" not in fake.prompts[2]
        assert "MISSING REQUIREMENT HEADERS" in fake.prompts[2]


class TestFailures:
    def test_forbidden_every_attempt(self, loader, fake_llm):
        fake_llm("Would you like me to add more detail?\n" + _sop())
        with pytest.raises(ForbiddenPatternError) as exc:
            fill_template("", ANSWERS, ModuleContext(module_number="1", sub_module_name="1.01"),
                          loader=loader, force_micro_categories=[])

        assert exc.value.attempts == 3
        assert exc.value.details["forbidden_patterns"] == ["LLM asking for permission"]
        assert str(exc.value).startswith("Document generation failed after 3 attempts.")

    def test_missing_header_every_attempt(self, loader, fake_llm):
        fake_llm(_sop(header=False))
        with pytest.raises(MissingCoreAnswerOrHeaderError) as exc:
            fill_template("", ANSWERS, ModuleContext(module_number="1", sub_module_name="1.01"),
                          loader=loader, force_micro_categories=[])

        assert exc.value.attempts == 3
        assert exc.value.details["missing_requirement_headers"] == ["1.01.01"]
        assert "Missing requirement headers: 1.01.01" in str(exc.value)

    def test_missing_sections_every_attempt(self, loader, fake_llm):
        fake_llm(_sop(sections=12) + "\n\n" + FILLER * 40)
        answers = {"company_name": "Acme Farms", "requirement_1_01_01": True}
        with pytest.raises(IncompleteSectionCountError) as exc:
            fill_template("", answers, ModuleContext(module_number="1", sub_module_name="1.01"),
                          loader=loader, force_micro_categories=[])

        assert exc.value.attempts == 3
        assert exc.value.details["section_count"] == 12
        assert "Only 12/15 sections generated" in str(exc.value)

    def test_insufficient_questions_without_model_calls(self, loader, fake_llm, monkeypatch):
        generation = fake_llm(_sop())
        extracted = json.dumps(
            [{"id": "company_name", "question": "What is the company name?", "type": "text"}]
            + [{"id": f"extra_{i}", "question": f"Grow room check {i}?", "type": "text"} for i in range(8)]
        )
        extraction_calls = []

        def _extract(prompt, max_tokens=None):
            extraction_calls.append(prompt)
            return extracted

        monkeypatch.setattr("primus_docgen.generation.questions.llm_text_call", _extract)
        with pytest.raises(InsufficientQuestionsError, match="insufficient questions \\(6\\)"):
            fill_template("Grow room template", {"company_name": "Acme Farms"},
                          ModuleContext(module_number="3"), document_name="Grow Room SOP", loader=loader)

        assert extraction_calls == []
        assert generation.prompts == []


class TestFingerprints:
    def test_inputs_hash_ignores_answer_order(self):
        reordered = dict(reversed(list(ANSWERS.items())))
        assert generation_inputs_hash("1", "1.01", None, ANSWERS) == generation_inputs_hash("1", "1.01", None, reordered)
        assert generation_inputs_hash("1", "1.01", None, ANSWERS) != generation_inputs_hash("1", "1.02", None, ANSWERS)

    def test_document_hash_normalises_line_endings(self):
        assert document_hash("1. TITLE\r\nBody\n") == document_hash("1. TITLE\nBody")


class TestTwoPass:
    def test_verification_findings_are_warnings(self, loader, fake_llm, monkeypatch):
        fake_llm(_sop())
        monkeypatch.setattr(
            "primus_docgen.orchestration.graph.llm_json_call",
            lambda prompt, model: DocumentVerification(ok=False, missing_sections=["9. Monitoring Plan"]),
        )
        state = _run(loader, two_pass=True)

        assert state.status == GenerationStatus.ACCEPTED
        assert state.verification.ok is False

    def test_verification_errors_do_not_fail(self, loader, fake_llm, monkeypatch):
        fake_llm(_sop())

        def _broken(prompt, model):
            raise RuntimeError("provider unavailable")

        monkeypatch.setattr("primus_docgen.orchestration.graph.llm_json_call", _broken)
        state = _run(loader, two_pass=True)
        assert state.status == GenerationStatus.ACCEPTED
        assert state.verification is None


class TestDecisions:
    def test_routes(self):
        assert route_after_evaluate({"last_result": {"outcome": AttemptOutcome.RETRY}}) == "revise_prompt"
        assert route_after_evaluate({"last_result": {"outcome": AttemptOutcome.FAIL}}) == "fail"
        accept = {"last_result": {"outcome": AttemptOutcome.ACCEPT}}
        assert route_after_evaluate(accept) == "finalize"
        assert route_after_evaluate({**accept, "two_pass": True}) == "verify"

    def test_forbidden_on_last_attempt_fails(self):
        report = AttemptReport(
            attempt=3,
            forbidden=ForbiddenCheckResult(
                has_forbidden_patterns=True, forbidden_patterns=["LLM offering help"], snippets=["I can help you"]
            ),
        )
        result = decide_attempt(report, 3, {}, [], "5", document_name="Pest Control Program")
        assert result.outcome == AttemptOutcome.FAIL
        assert result.message.splitlines() == [
            "Document generation failed after 3 attempts.",
            "Forbidden patterns: LLM offering help",
            "Module: 5, Submodule: N/A",
            "Document: Pest Control Program",
        ]

    def test_short_document_retried(self):
        report = AttemptReport(attempt=1, section_count=15, word_count=400)
        result = decide_attempt(report, 3, {}, [], "1")
        assert result.outcome == AttemptOutcome.RETRY
        assert result.reason == FailureReason.INCOMPLETE_SECTIONS
        assert "only 400 words" in result.feedback


class TestCli:
    def test_list_requirements(self, capsys):
        assert run(["--module", "1", "--submodule", "1.01", "--list-requirements"]) is None
        out = capsys.readouterr().out
        assert "SUBMODULE: 1.01 - " in out
        assert "[1.01.01]" in out

    def test_answers_file_required(self):
        with pytest.raises(SystemExit):
            run(["--module", "1"])

    def test_generates_to_file(self, tmp_path, fake_llm):
        fake_llm(_sop())
        answers = tmp_path / "answers.json"
        answers.write_text(json.dumps(ANSWERS), encoding="utf-8")
        out = tmp_path / "sop.md"

        result = run([str(answers), "--module", "1", "--submodule", "1.01",
                      "--document", "Food Safety Policy", "--out", str(out)])

        assert out.read_text(encoding="utf-8") == result.content
        assert "Organization: Acme Farms" in result.content
