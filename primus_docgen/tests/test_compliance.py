"""
Tests: Compliance crosswalk, micro-rule lint with auto-correction and the
overall compliance summary score.

Run with:
    pytest primus_docgen/tests/test_compliance.py -v
"""

import pytest

from primus_docgen.compliance.engine import (
    GAP_MANDATORY,
    count_placeholders,
    format_crosswalk_table,
    generate_compliance_summary,
    generate_crosswalk,
    insert_after_section,
    keyword_threshold,
    lint_compliance,
    rule_present,
    validate_mandatory_structure,
)
from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader
from primus_docgen.models.enums import CrosswalkStatus
from primus_docgen.validation.vocabulary import ValidatorVocabulary

FILLER = "The Food Safety Manager reviews sanitation records daily and files them in the QA office. "


@pytest.fixture
def loader() -> FrameworkLoader:
    return FrameworkLoader(cache=FrameworkCache())


def _document(bodies=None):
    """Fifteen sections; ``bodies`` overrides the body text of given section numbers."""
    bodies = bodies or {}
    parts = []
    for section in ValidatorVocabulary().mandatory_sections:
        body = bodies.get(section.number, (FILLER * 6).strip())
        if section.number == 15:
            body += "\nApproved By: Jane Doe Date: 2024-01-01"
        parts.append(f"{section.number}. {section.title.upper()}\n{body}")
    return "\n\n".join(parts)


def _entry(report, code):
    return next(e for e in report.entries if e.requirement_code == code)


class TestCrosswalk:
    def test_threshold(self):
        assert keyword_threshold(1) == 1
        assert keyword_threshold(2) == 1
        assert keyword_threshold(3) == 2
        assert keyword_threshold(0) == 1

    def test_checklist_fallback_two_hits_fulfil(self, loader):
        doc = _document({8: "Pest activity is reviewed weekly.\nRodent traps are checked by the Sanitation Lead."})
        report = generate_crosswalk(doc, "5", loader=loader)

        assert report.module_name == "Facility"
        assert report.total_requirements == 4
        entry = _entry(report, "5.12.01")
        assert entry.status == CrosswalkStatus.FULFILLED
        assert entry.matched_keywords == ["pest", "rodent"]
        assert entry.document_section == "PROCEDURES"
        assert entry.evidence.startswith("Pest activity is reviewed weekly.")

    def test_checklist_fallback_one_hit_is_gap(self, loader):
        doc = _document({8: "Pest activity is reviewed weekly."})
        entry = _entry(generate_crosswalk(doc, "5", loader=loader), "5.12.01")
        assert entry.status == CrosswalkStatus.GAP
        assert entry.evidence == GAP_MANDATORY
        assert entry.document_section is None

    def test_submodule_spec_preferred(self, loader):
        doc = _document({8: "A licensed pest control operator services the site. Activity trend charts are kept."})
        report = generate_crosswalk(doc, "5", sub_module_name="5.12", loader=loader)

        assert report.module_name == "Pest Control Program"
        assert [e.requirement_code for e in report.entries] == ["5.12.01", "5.12.02", "5.12.03"]
        assert [e.status for e in report.entries] == [
            CrosswalkStatus.FULFILLED,
            CrosswalkStatus.GAP,
            CrosswalkStatus.FULFILLED,
        ]
        assert report.fulfilled_count == 2
        assert report.gap_count == 1

    def test_table(self, loader):
        report = generate_crosswalk(_document(), "5", loader=loader)
        table = format_crosswalk_table(report)
        assert table.startswith("Primus Code | Requirement | Document Section | Evidence")
        assert "5.12.01 | Pest control program... | GAP |" in table


class TestLint:
    def test_rule_presence_by_key_phrase(self):
        rule = "Bait stations must be secured, tamper-resistant and numbered on the device map"
        assert rule_present(rule, "all bait stations must be secured, tamper-resistant and numbered.")
        assert not rule_present(rule, "bait stations are used.")

    def test_missing_rules_inserted_into_procedures(self, loader):
        report = lint_compliance(_document(), ["pest"], auto_correct=True, loader=loader)

        assert report.total_rules_checked == 3
        assert report.missing_rules_count == 3
        corrected = report.corrected_document
        procedures, rest = corrected.split("9. MONITORING PLAN")
        assert "- Bait stations must be secured" in procedures
        assert "- No rodenticide bait is used" in procedures
        assert "Bait stations" not in rest
        assert procedures.endswith("office.\n\n- Bait stations must be secured, tamper-resistant and numbered "
                                   "on the device map\n- No rodenticide bait is used inside production or "
                                   "storage areas\n- Pest control service reports are reviewed and signed by "
                                   "the QA Manager within 48 hours of each visit\n\n")

    def test_present_rules_are_not_reported(self, loader):
        doc = _document({8: "No rodenticide bait is used inside production or storage areas."})
        report = lint_compliance(doc, ["pest"], loader=loader)
        assert [i.rule_id for i in report.issues] == ["pest_01", "pest_03"]
        assert report.corrected_document is None

    def test_traceability_rules_go_to_section_12(self, loader):
        report = lint_compliance(_document(), ["traceability"], auto_correct=True, loader=loader)
        section_12 = report.corrected_document.split("12. TRACEABILITY & RECALL ELEMENTS")[1].split("13. ")[0]
        assert "- Every finished lot is traceable" in section_12

    def test_only_requested_categories_checked(self, loader):
        report = lint_compliance(_document(), [], loader=loader)
        assert report.total_rules_checked == 0


class TestInsertion:
    def test_missing_section_leaves_document_unchanged(self):
        doc = "3. SCOPE\nAll sites."
        assert insert_after_section(doc, "8. Procedures", "\n- rule") == doc

    def test_refuses_signature_section(self):
        doc = _document()
        assert insert_after_section(doc, "15. Revision History & Approval Signatures", "\n- rule") == doc

    def test_refuses_near_signatures(self):
        doc = (
            "8. PROCEDURES\nInspect devices weekly.\n\n"
            "15. REVISION HISTORY & APPROVAL SIGNATURES\nApproved By: Jane Doe Date: 2024-01-01"
        )
        assert insert_after_section(doc, "8. Procedures", "\n- rule") == doc

    def test_markdown_header_is_found(self):
        doc = _document().replace("8. PROCEDURES", "## 8. Procedures")
        assert "- rule" in insert_after_section(doc, "8. Procedures", "\n- rule")


class TestSummary:
    def test_structure_and_placeholders(self):
        assert validate_mandatory_structure(_document()).valid is True
        check = validate_mandatory_structure("1. TITLE & DOCUMENT CONTROL\n3. SCOPE")
        assert "Procedures" in check.missing_sections
        assert count_placeholders("Owner {{capa_owner}} on [TBD], see [todo]") == 3

    def test_score_weights(self, loader):
        summary = generate_compliance_summary(_document(), "5", relevant_categories=["pest"], loader=loader)
        # crosswalk 0/4 -> 0, lint 3 missing -> 24, structure 20, placeholders 10
        assert summary.overall_score == 54
        assert summary.recommendations[0] == "Address mandatory requirement gaps: 5.11.01, 5.11.02, 5.12.01, 5.12.02"
        assert summary.recommendations[1] == "Add missing micro-rule content: pest_01, pest_02, pest_03"

    def test_placeholders_reduce_score(self, loader):
        doc = _document({3: "Owner: {{capa_owner}}"})
        summary = generate_compliance_summary(doc, "5", loader=loader)
        # crosswalk 0, lint clean 30, structure 20, placeholders 9
        assert summary.overall_score == 59
        assert summary.recommendations[-1] == "Replace 1 remaining placeholder(s) with actual values"
