"""
LangGraph State Machine — spec-driven document generation with retries.

    prepare → generate → evaluate ─┬─ RETRY  → revise_prompt → generate
                                   ├─ ACCEPT → [verify →] finalize → END
                                   └─ FAIL   → fail → END

Nodes hydrate ``GenerationState`` from the state dict and return the
updated dict.  The retry policy itself lives in ``transitions``; nodes
only call it and record the outcome.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Optional

from langgraph.graph import END, StateGraph

from primus_docgen.config import get_settings
from primus_docgen.exceptions import (
    ForbiddenPatternError,
    GenerationFailedError,
    IncompleteSectionCountError,
    InsufficientQuestionsError,
    MissingCoreAnswerOrHeaderError,
)
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.framework.micro_rules import detect_relevant_micro_rule_groups
from primus_docgen.generation.prompt_builder import build_enhanced_spec_driven_prompt, compute_token_limit
from primus_docgen.generation.questions import CORE_QUESTIONS, build_questions_from_spec, validate_questions
from primus_docgen.generation.requirements import map_answers_to_requirements
from primus_docgen.models.enums import FailureReason, GenerationStatus
from primus_docgen.models.schemas import AnswerValue, DocumentVerification, ModuleContext
from primus_docgen.models.state import GenerationState
from primus_docgen.orchestration.transitions import (
    decide_attempt,
    next_prompt,
    process_attempt,
    route_after_evaluate,
)
from primus_docgen.services.llm_service import llm_json_call, llm_text_call

logger = logging.getLogger(__name__)

_FAILURE_ERRORS: dict[FailureReason, type[GenerationFailedError]] = {
    FailureReason.FORBIDDEN_PATTERN: ForbiddenPatternError,
    FailureReason.MISSING_ANSWERS: MissingCoreAnswerOrHeaderError,
    FailureReason.INCOMPLETE_SECTIONS: IncompleteSectionCountError,
}


# ── Nodes ────────────────────────────────────────────────

def prepare(state: dict[str, Any], loader: FrameworkLoader) -> dict[str, Any]:
    """Resolve questions, requirement mappings, micro-rule groups and the first prompt."""
    s = GenerationState(**state)
    context = ModuleContext(module_number=s.module_number, sub_module_name=s.sub_module_name)

    if not s.questions:
        s.questions = validate_questions(
            build_questions_from_spec(s.module_number, s.document_name, s.sub_module_name, loader)
        )
    if len(s.questions) <= len(CORE_QUESTIONS):
        raise InsufficientQuestionsError(
            f"Spec-driven generation failed: insufficient questions ({len(s.questions)}). "
            f"Module {s.module_number}, Submodule: {s.sub_module_name or 'N/A'}, "
            f"Document: {s.document_name or 'N/A'}. Spec files may be missing or incomplete."
        )

    s.micro_categories = (
        s.force_micro_categories
        if s.force_micro_categories is not None
        else detect_relevant_micro_rule_groups(context, s.document_name)
    )
    s.mappings = map_answers_to_requirements(
        s.answers, s.questions, s.module_number, s.document_name, s.sub_module_name, loader
    )
    s.prompt = build_enhanced_spec_driven_prompt(
        s.module_number,
        s.answers,
        s.questions,
        s.document_name,
        s.sub_module_name,
        force_micro_categories=s.micro_categories,
        loader=loader,
        mappings=s.mappings,
    )
    requirement_count = sum(1 for q in s.questions if q.id.startswith("requirement_"))
    s.token_limit = compute_token_limit(requirement_count)
    s.max_attempts = get_settings().max_generation_attempts

    logger.info(
        f"[GRAPH] Prepared: {len(s.questions)} questions, {len(s.mappings)} mappings, "
        f"micro groups={s.micro_categories}, token_limit={s.token_limit}"
    )
    return s.model_dump()


def generate(state: dict[str, Any]) -> dict[str, Any]:
    s = GenerationState(**state)
    s.attempt += 1
    s.status = GenerationStatus.GENERATING if s.attempt == 1 else GenerationStatus.RETRYING
    logger.info(f"[GRAPH] Generation attempt {s.attempt}/{s.max_attempts}")
    s.raw_output = llm_text_call(s.prompt, max_tokens=s.token_limit)
    return s.model_dump()


def evaluate(state: dict[str, Any], loader: FrameworkLoader) -> dict[str, Any]:
    s = GenerationState(**state)
    report = process_attempt(s.attempt, s.raw_output, s.answers, s.questions, s.micro_categories, loader)
    result = decide_attempt(
        report, s.max_attempts, s.answers, s.mappings, s.module_number, s.sub_module_name, s.document_name
    )
    s.last_report = report
    s.last_result = result
    s.history.append(result)
    return s.model_dump()


def revise_prompt(state: dict[str, Any]) -> dict[str, Any]:
    s = GenerationState(**state)
    s.prompt = next_prompt(s.prompt, s.last_result.feedback if s.last_result else "")
    return s.model_dump()


def verify(state: dict[str, Any]) -> dict[str, Any]:
    """Optional second pass: the model reports gaps; findings are warnings only."""
    s = GenerationState(**state)
    codes = ", ".join(m.code for m in s.mappings)
    prompt = (
        "You are verifying a Primus GFS document for completeness. Report any of the 15 mandatory "
        "sections that are missing and any requirement codes that are not addressed.\n"
        f"Checklist Codes: {codes}\n"
        f"Document:\n<<<BEGIN_DOC>>>\n{s.last_report.document}\n<<<END_DOC>>>\n"
        "Assess now:"
    )
    try:
        s.verification = llm_json_call(prompt, DocumentVerification)
    except Exception as e:
        logger.warning(f"[VERIFY] Verification pass failed: {e}")
        return s.model_dump()

    if not s.verification.ok:
        logger.warning(
            f"[VERIFY] Missing sections: {s.verification.missing_sections} | Issues: {s.verification.issues}"
        )
    return s.model_dump()


def finalize(state: dict[str, Any]) -> dict[str, Any]:
    s = GenerationState(**state)
    s.final_document = s.last_report.document
    s.status = GenerationStatus.ACCEPTED
    logger.info(f"[GRAPH] Document accepted on attempt {s.attempt} ({s.last_report.word_count} words)")
    return s.model_dump()


def fail(state: dict[str, Any]) -> dict[str, Any]:
    s = GenerationState(**state)
    s.status = GenerationStatus.FAILED
    s.failure_reason = s.last_result.reason
    s.error_message = s.last_result.message
    logger.error(f"[GRAPH] Generation failed: {s.error_message}")
    return s.model_dump()


# ── Build the graph ──────────────────────────────────────

def build_generation_graph(loader: FrameworkLoader | None = None):
    """Construct and compile the retry state machine."""
    loader = loader or get_framework_loader()
    graph = StateGraph(dict)

    graph.add_node("prepare", partial(prepare, loader=loader))
    graph.add_node("generate", generate)
    graph.add_node("evaluate", partial(evaluate, loader=loader))
    graph.add_node("revise_prompt", revise_prompt)
    graph.add_node("verify", verify)
    graph.add_node("finalize", finalize)
    graph.add_node("fail", fail)

    graph.set_entry_point("prepare")
    graph.add_edge("prepare", "generate")
    graph.add_edge("generate", "evaluate")
    graph.add_conditional_edges(
        "evaluate",
        route_after_evaluate,
        {
            "revise_prompt": "revise_prompt",
            "verify": "verify",
            "finalize": "finalize",
            "fail": "fail",
        },
    )
    graph.add_edge("revise_prompt", "generate")
    graph.add_edge("verify", "finalize")
    graph.add_edge("finalize", END)
    graph.add_edge("fail", END)

    return graph.compile()


# ── Convenience runners ──────────────────────────────────

def run_generation(initial_state: dict[str, Any], loader: FrameworkLoader | None = None) -> GenerationState:
    """Run the graph end-to-end and return the final state."""
    compiled = build_generation_graph(loader)
    state = GenerationState(**initial_state).model_dump()
    final_state = compiled.invoke(state)
    return GenerationState(**final_state)


def raise_for_failure(state: GenerationState) -> None:
    if state.status != GenerationStatus.FAILED:
        return
    error_cls = _FAILURE_ERRORS.get(state.failure_reason, GenerationFailedError)
    details = state.last_result.details if state.last_result else {}
    raise error_cls(state.error_message, attempts=state.attempt, details=details)


def fill_template(
    template_text: str,
    answers: dict[str, AnswerValue],
    context: Optional[ModuleContext] = None,
    two_pass: bool = False,
    document_name: Optional[str] = None,
    loader: FrameworkLoader | None = None,
    force_micro_categories: Optional[list[str]] = None,
) -> str:
    """
    Generate an accepted document for the given answers.

    Raises InsufficientQuestionsError when the spec yields no requirement
    questions, and a GenerationFailedError subclass naming the missing
    items when every attempt is rejected.
    """
    context = context or ModuleContext()
    state = run_generation(
        {
            "module_number": context.module_number,
            "sub_module_name": context.sub_module_name,
            "document_name": document_name,
            "template_text": template_text,
            "answers": answers,
            "two_pass": two_pass,
            "force_micro_categories": force_micro_categories,
        },
        loader=loader,
    )
    raise_for_failure(state)
    return state.final_document
