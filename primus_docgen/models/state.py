"""
LangGraph shared state for the generation retry loop.

Design rules:
  1. `prepare` owns the request-derived fields (questions, mappings, prompt).
  2. `generate` owns `raw_output`; `evaluate` owns `last_report` / `last_result`.
  3. Only the terminal nodes write `final_document`, `status` and `error_message`.
"""

from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field

from .enums import FailureReason, GenerationStatus
from .schemas import (
    AnswerValue,
    AttemptReport,
    AttemptResult,
    DocumentVerification,
    QuestionItem,
    RequirementMapping,
)


class GenerationState(BaseModel):
    """The state dict passed through every node of the retry graph."""

    # ── Control ──────────────────────────────────────────
    status: GenerationStatus = GenerationStatus.PENDING
    error_message: str = ""
    failure_reason: Optional[FailureReason] = None

    # ── Request ──────────────────────────────────────────
    module_number: str = "1"
    document_name: Optional[str] = None
    sub_module_name: Optional[str] = None
    template_text: str = ""
    answers: dict[str, AnswerValue] = {}
    force_micro_categories: Optional[list[str]] = None
    two_pass: bool = False

    # ── prepare ──────────────────────────────────────────
    questions: list[QuestionItem] = []
    mappings: list[RequirementMapping] = []
    micro_categories: list[str] = []
    prompt: str = ""
    token_limit: int = 25000
    max_attempts: int = 3

    # ── generate / evaluate ──────────────────────────────
    attempt: int = 0
    raw_output: str = ""
    last_report: Optional[AttemptReport] = None
    last_result: Optional[AttemptResult] = None
    history: list[AttemptResult] = Field(default_factory=list)

    # ── Terminal ─────────────────────────────────────────
    final_document: str = ""
    verification: Optional[DocumentVerification] = None
