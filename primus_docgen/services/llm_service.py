"""
LLM Service — the single Groq chat model used for document generation.

  - get_llm()         → shared ChatGroq client, deterministic sampling
  - llm_text_call()   → SOP text under a per-document token budget
  - llm_json_call()   → verification passes parsed into a Pydantic model
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

from primus_docgen.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_llm_instance = None


def get_llm():
    """Shared ChatGroq client. Temperature 0 and top_p 1 keep regeneration stable."""
    global _llm_instance
    if _llm_instance is None:
        settings = get_settings()
        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY must be set (environment or .env) to generate documents")

        from langchain_groq import ChatGroq

        _llm_instance = ChatGroq(
            api_key=settings.groq_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens_cap,
            model_kwargs={"top_p": settings.llm_top_p},
        )
        logger.info(f"[LLM] Groq client ready: model={settings.llm_model}, cap={settings.llm_max_tokens_cap}")
    return _llm_instance


def _log_response(response, elapsed: float, budget: int) -> str:
    content = response.content or ""
    meta = getattr(response, "response_metadata", {}) or {}
    finish_reason = meta.get("finish_reason", "unknown")
    usage = meta.get("token_usage") or meta.get("usage", {})

    logger.info(
        f"[LLM] {len(content)} chars in {elapsed:.2f}s | "
        f"finish_reason={finish_reason} | budget={budget} | usage={usage}"
    )
    if finish_reason == "length":
        logger.warning(f"[LLM] Output cut off by the {budget}-token budget; sections may be missing")
    if not content.strip():
        logger.warning(f"[LLM] Model returned no text (finish_reason={finish_reason})")
    return content


def llm_text_call(prompt: str, max_tokens: Optional[int] = None) -> str:
    """
    Generate raw document text.

    ``max_tokens`` is clamped to ``llm_max_tokens_cap``; ``None`` uses the cap.
    """
    cap = get_settings().llm_max_tokens_cap
    budget = min(max_tokens, cap) if max_tokens else cap
    logger.debug(f"[LLM] Prompt {len(prompt)} chars, budget {budget}:\n{prompt[:500]}")

    started = time.perf_counter()
    response = get_llm().bind(max_tokens=budget).invoke(prompt)
    return _log_response(response, time.perf_counter() - started, budget)


def llm_json_call(prompt: str, output_model: Type[T]) -> T:
    """Structured call through ``with_structured_output``; used by the verification passes."""
    logger.debug(f"[LLM] Structured prompt {len(prompt)} chars → {output_model.__name__}")

    started = time.perf_counter()
    result = get_llm().with_structured_output(output_model).invoke(prompt)
    logger.info(f"[LLM] {output_model.__name__} parsed in {time.perf_counter() - started:.2f}s")
    return result
