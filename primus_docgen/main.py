"""
Primus GFS Document Generator — Main Entry Point

Generate a document from a JSON answers file (CLI):
    python -m primus_docgen.main answers.json --module 5 --document "Pest Control Program"
    python -m primus_docgen.main answers.json --module 1 --submodule 1.01 --two-pass --out sop.md
    python -m primus_docgen.main --module 5 --submodule 5.12 --list-requirements

Or import and run programmatically:
    from primus_docgen.main import generate_document
    result = generate_document(DocumentGenerationOptions(module_number="5", answers={...}))
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from primus_docgen.compliance.engine import generate_compliance_summary
from primus_docgen.config import get_settings
from primus_docgen.framework.loader import FrameworkLoader, get_framework_loader
from primus_docgen.generation.structure_builder import build_deterministic_structure, build_requirements_list
from primus_docgen.models.schemas import (
    AnswerPresenceResult,
    DocumentGenerationOptions,
    GeneratedDocument,
    GenerationMetadata,
    GenerationValidationSummary,
)
from primus_docgen.orchestration.graph import raise_for_failure, run_generation
from primus_docgen.utils.hashing import document_hash, generation_inputs_hash
from primus_docgen.utils.logger import setup_logging
from primus_docgen.validation.output_validator import count_words, validate_llm_output

logger = logging.getLogger(__name__)


def generate_document(
    options: DocumentGenerationOptions, loader: FrameworkLoader | None = None
) -> GeneratedDocument:
    """Run the generation graph and assemble the result with validation and compliance scoring."""
    loader = loader or get_framework_loader()

    template_used = None
    template_text = options.template_text
    if not template_text:
        meta = loader.select_template_metadata(options.module_number, options.sub_module_name, options.document_name)
        if meta is not None:
            template_used = meta.file_path
            template_text = loader.load_template(meta.file_path)
        else:
            template_text = build_deterministic_structure(
                options.module_number, options.sub_module_name, options.document_name, options.answers, loader
            )

    state = run_generation(
        {
            "module_number": options.module_number,
            "sub_module_name": options.sub_module_name,
            "document_name": options.document_name,
            "template_text": template_text,
            "answers": options.answers,
            "two_pass": options.two_pass,
            "force_micro_categories": options.force_micro_categories,
        },
        loader=loader,
    )
    raise_for_failure(state)
    document = state.final_document

    spec = loader.find_submodule_spec_by_name(options.module_number, options.document_name, options.sub_module_name)
    validation = validate_llm_output(document)
    compliance = generate_compliance_summary(
        document,
        options.module_number,
        options.sub_module_name,
        state.micro_categories,
        options.document_name,
        loader=loader,
    )
    presence = state.last_report.answers or AnswerPresenceResult()

    return GeneratedDocument(
        content=document,
        module_number=options.module_number,
        submodule_code=spec.code if spec else None,
        submodule_title=spec.title if spec else None,
        requirements_count=len(state.mappings),
        validation=GenerationValidationSummary(
            valid=validation.valid,
            error_count=len(validation.errors),
            warning_count=len(validation.warnings),
            missing_requirements=presence.missing_requirement_headers,
            answers_not_near_header=presence.answers_not_near_header,
        ),
        compliance_score=compliance.overall_score,
        metadata=GenerationMetadata(
            template_used=template_used,
            micro_categories_applied=state.micro_categories,
            word_count=count_words(document),
            content_hash=document_hash(document),
            inputs_hash=generation_inputs_hash(
                options.module_number, options.sub_module_name, options.document_name, options.answers
            ),
            attempts=state.attempt,
        ),
    )


def run(argv: list[str] | None = None) -> GeneratedDocument | None:
    """CLI entry: parse arguments, generate, write the document and print a summary."""
    parser = argparse.ArgumentParser(prog="primus_docgen", description="Generate a Primus GFS SOP document")
    parser.add_argument("answers", nargs="?", help="Path to a JSON file of question id -> answer")
    parser.add_argument("--module", default="1", help="Module number (1-7)")
    parser.add_argument("--submodule", default=None, help="Submodule code or name, e.g. 5.12")
    parser.add_argument("--document", default=None, help="Document name")
    parser.add_argument("--two-pass", action="store_true", help="Run the verification pass after acceptance")
    parser.add_argument("--out", default=None, help="Write the document here instead of stdout")
    parser.add_argument(
        "--list-requirements", action="store_true", help="Print the submodule requirements and exit"
    )
    args = parser.parse_args(argv)

    setup_logging(get_settings().log_level)
    if args.list_requirements:
        sys.stdout.write(build_requirements_list(args.module, args.submodule, args.document) + "\n")
        return None

    if not args.answers:
        parser.error("answers file is required unless --list-requirements is given")

    logger.info("=" * 60)
    logger.info("  PRIMUS GFS DOCUMENT GENERATOR")
    logger.info(f"  Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    answers = json.loads(Path(args.answers).read_text(encoding="utf-8"))
    result = generate_document(
        DocumentGenerationOptions(
            module_number=args.module,
            sub_module_name=args.submodule,
            document_name=args.document,
            answers=answers,
            two_pass=args.two_pass,
        )
    )

    if args.out:
        Path(args.out).write_text(result.content, encoding="utf-8")
    else:
        sys.stdout.write(result.content + "\n")

    _print_summary(result)
    return result


def _print_summary(result: GeneratedDocument) -> None:
    """Print a human-readable summary of the generation result."""
    logger.info("")
    logger.info("-" * 60)
    logger.info("  GENERATION RESULT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Module:         {result.module_number}")
    logger.info(f"  Submodule:      {result.submodule_code or 'N/A'} {result.submodule_title or ''}")
    logger.info(f"  Requirements:   {result.requirements_count} mapped")
    logger.info(f"  Attempts:       {result.metadata.attempts}")
    logger.info(f"  Word Count:     {result.metadata.word_count}")
    logger.info(
        f"  Validation:     {'VALID' if result.validation.valid else 'INVALID'} "
        f"({result.validation.error_count} errors, {result.validation.warning_count} warnings)"
    )
    if result.validation.answers_not_near_header:
        logger.info(f"  Answers Far:    {', '.join(result.validation.answers_not_near_header)}")
    logger.info(f"  Compliance:     {result.compliance_score}/100")
    logger.info(f"  Micro Rules:    {', '.join(result.metadata.micro_categories_applied) or 'none'}")
    logger.info(f"  Content Hash:   {result.metadata.content_hash[:16]}...")
    logger.info("-" * 60)


if __name__ == "__main__":
    run()
