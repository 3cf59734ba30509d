"""
Framework Loader — typed access to the static Primus GFS taxonomy.

Reads module / submodule / sub-submodule specifications, audit checklists,
micro-rules and document templates from ``framework_data/``.  Every file is
parsed into a frozen pydantic model and kept in a ``FrameworkCache`` owned
by the loader, so the taxonomy is read from disk at most once per loader.

Usage:
    loader = FrameworkLoader()
    spec = loader.find_submodule_spec_by_name("5", document_name="Pest Control Program")
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from primus_docgen.config import get_settings
from primus_docgen.exceptions import SpecNotFoundError
from primus_docgen.models.schemas import (
    ChecklistRequirement,
    DocumentStructureTemplate,
    MicroRules,
    ModuleChecklist,
    ModuleSpec,
    SubmoduleRequirement,
    SubmoduleSpec,
    SubSubmoduleSpec,
    TemplateMetadata,
)
from primus_docgen.utils.codes import code_sort_key

logger = logging.getLogger(__name__)

# Default path to bundled framework data (relative to this file)
_DATA_DIR = Path(__file__).parent / "framework_data"

CHECKLIST_MODULES = ["1", "2", "3", "4", "5", "6"]

MICRO_RULE_CATEGORIES = [
    "pest",
    "chemical",
    "document_control",
    "glass_brittle_plastic",
    "haccp",
    "traceability",
    "allergen",
]

SUB_SUBMODULE_CODE_RE = re.compile(r"(\d+\.\d{2}\.\d+[a-z]?)")

AVAILABLE_TEMPLATES: list[TemplateMetadata] = [
    TemplateMetadata(
        module="1",
        sub_module="Document Control",
        file_path="module_1_document_control.txt",
        keywords=["document control", "document management", "records", "obsolete", "external documents"],
    ),
    TemplateMetadata(
        module="5",
        sub_module="Pest Control",
        file_path="module_5_pest.txt",
        keywords=["pest", "rodent", "insect", "bait", "pest management", "IPM"],
    ),
    TemplateMetadata(
        module="5",
        sub_module="Chemical Control",
        file_path="module_5_chemical.txt",
        keywords=["chemical", "sanitizer", "cleaning", "SDS", "MSDS", "storage", "labeling"],
    ),
]


# ── Cache ────────────────────────────────────────────────

class FrameworkCache:
    """
    In-process store for parsed framework records.

    Entries are never evicted: the taxonomy is static for the lifetime of
    the process, and re-populating a key yields an identical value.
    """

    def __init__(self):
        self.modules: dict[str, ModuleSpec] = {}
        self.submodules: dict[str, SubmoduleSpec] = {}
        self.sub_submodules: dict[str, SubSubmoduleSpec] = {}
        self.checklists: dict[str, ModuleChecklist] = {}
        self.micro_rules: dict[str, MicroRules] = {}
        self.templates: dict[str, str] = {}

    def clear(self) -> None:
        self.modules.clear()
        self.submodules.clear()
        self.sub_submodules.clear()
        self.checklists.clear()
        self.micro_rules.clear()
        self.templates.clear()

    def stats(self) -> dict[str, int]:
        return {
            "checklists": len(self.checklists),
            "micro_rules": len(self.micro_rules),
            "templates": len(self.templates),
            "submodule_specs": len(self.submodules),
            "sub_submodule_specs": len(self.sub_submodules),
            "module_specs": len(self.modules),
        }


# ── Loader ───────────────────────────────────────────────

class FrameworkLoader:
    """Loads and caches the module → submodule → requirement taxonomy."""

    def __init__(self, data_dir: str | Path | None = None, cache: FrameworkCache | None = None):
        if data_dir is None:
            configured = get_settings().framework_data_dir
            data_dir = Path(configured) if configured else _DATA_DIR
        self.data_dir = Path(data_dir)
        self.cache = cache if cache is not None else FrameworkCache()

    # ── Paths ───────────────────────────────────────────

    @property
    def modules_dir(self) -> Path:
        return self.data_dir / "modules"

    @property
    def submodules_dir(self) -> Path:
        return self.data_dir / "submodules"

    @property
    def checklists_dir(self) -> Path:
        return self.data_dir / "checklists"

    @property
    def micro_rules_dir(self) -> Path:
        return self.data_dir / "micro_rules"

    @property
    def templates_dir(self) -> Path:
        return self.data_dir / "templates"

    def _load_json(self, path: Path) -> Any:
        if not path.exists():
            raise SpecNotFoundError(f"Framework file not found: {path}")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    # ── Module specifications ───────────────────────────

    def load_module_spec(self, module_number: str) -> ModuleSpec:
        """Load the module-level spec (metadata, submodule list, 15-section template)."""
        key = f"module_{module_number}"
        if key in self.cache.modules:
            return self.cache.modules[key]

        path = self.modules_dir / f"module_{module_number}.json"
        data = self._load_json(path)
        if not data.get("module") or not data.get("moduleName") or not data.get("documentStructureTemplate"):
            raise SpecNotFoundError(f"Invalid module spec structure in {path.name}")
        try:
            spec = ModuleSpec.model_validate(data)
        except ValidationError as e:
            raise SpecNotFoundError(f"Module spec for module {module_number} is invalid: {e}") from e

        self.cache.modules[key] = spec
        logger.info(f"[LOADER] Loaded module spec: {spec.module} - {spec.module_name}")
        return spec

    def get_document_structure(self, module_number: str) -> DocumentStructureTemplate:
        return self.load_module_spec(module_number).document_structure_template

    # ── Sub-submodule specifications ────────────────────

    def load_sub_submodule_spec(
        self, module_number: str, submodule_code: str, sub_submodule_code: str
    ) -> SubSubmoduleSpec:
        """Load one nested spec, e.g. ("4", "4.05", "4.05.01")."""
        key = f"{module_number}_{submodule_code}_{sub_submodule_code}"
        if key in self.cache.sub_submodules:
            return self.cache.sub_submodules[key]

        path = self.submodules_dir / f"module_{module_number}" / submodule_code / f"{sub_submodule_code}.json"
        data = self._load_json(path)
        if not all(data.get(k) for k in ("code", "title", "parentCode")) or "requirements" not in data:
            raise SpecNotFoundError(f"Invalid sub-submodule spec structure in {path.name}")
        try:
            spec = SubSubmoduleSpec.model_validate(data)
        except ValidationError as e:
            raise SpecNotFoundError(
                f"Sub-submodule spec for {module_number}/{submodule_code}/{sub_submodule_code} is invalid: {e}"
            ) from e

        self.cache.sub_submodules[key] = spec
        logger.info(f"[LOADER] Loaded sub-submodule spec: {spec.code} - {spec.title}")
        return spec

    def load_all_sub_submodules(self, module_number: str, submodule_code: str) -> list[SubSubmoduleSpec]:
        """All nested specs under a submodule folder, sorted by code; [] when there is no folder."""
        folder = self.submodules_dir / f"module_{module_number}" / submodule_code
        if not folder.is_dir():
            return []

        specs: list[SubSubmoduleSpec] = []
        for path in sorted(folder.glob("*.json")):
            try:
                specs.append(self.load_sub_submodule_spec(module_number, submodule_code, path.stem))
            except SpecNotFoundError as e:
                logger.warning(f"[LOADER] Skipping sub-submodule {path.stem}: {e}")

        specs.sort(key=lambda s: code_sort_key(s.code))
        return specs

    # ── Submodule specifications ────────────────────────

    def load_submodule_spec(self, module_number: str, submodule_code: str) -> SubmoduleSpec:
        """
        Load a submodule spec, e.g. ("5", "5.12").

        When the submodule is a folder of sub-submodule files, a virtual spec
        is built whose requirements are the children's requirements sorted
        by code, flagged with ``has_sub_submodules``.
        """
        key = f"{module_number}_{submodule_code}"
        if key in self.cache.submodules:
            return self.cache.submodules[key]

        folder = self.submodules_dir / f"module_{module_number}" / submodule_code
        if folder.is_dir():
            spec = self._aggregate_sub_submodules(module_number, submodule_code)
        else:
            path = self.submodules_dir / f"module_{module_number}" / f"{submodule_code}.json"
            data = self._load_json(path)
            if not data.get("code") or not data.get("title") or "requirements" not in data:
                raise SpecNotFoundError(f"Invalid submodule spec structure in {path.name}")
            try:
                spec = SubmoduleSpec.model_validate(data)
            except ValidationError as e:
                raise SpecNotFoundError(
                    f"Submodule spec for {module_number}/{submodule_code} is invalid: {e}"
                ) from e
            logger.info(f"[LOADER] Loaded submodule spec: {spec.code} - {spec.title}")

        self.cache.submodules[key] = spec
        return spec

    def _aggregate_sub_submodules(self, module_number: str, submodule_code: str) -> SubmoduleSpec:
        children = self.load_all_sub_submodules(module_number, submodule_code)
        if not children:
            raise SpecNotFoundError(f"No sub-submodules found in folder for {submodule_code}")

        module_spec = self.load_module_spec(module_number)
        ref = next((s for s in module_spec.submodules if s.code == submodule_code), None)
        if ref is None:
            raise SpecNotFoundError(
                f"Submodule {submodule_code} not found in module {module_number} configuration"
            )

        requirements = sorted(
            (req for child in children for req in child.requirements),
            key=lambda r: code_sort_key(r.code),
        )
        spec = SubmoduleSpec(
            code=submodule_code,
            title=ref.name,
            module_name=f"Module {module_number}: {module_spec.module_name}",
            applies_to=_unique(a for child in children for a in child.applies_to),
            description=f"Aggregated specification for {ref.name} with {len(children)} sub-sections",
            requirements=requirements,
            micro_inject=list(ref.micro_inject),
            capa_inject=_unique(c for child in children for c in child.capa_inject),
            traceability_inject=_unique(t for child in children for t in child.traceability_inject),
            has_sub_submodules=True,
        )
        logger.info(
            f"[LOADER] Aggregated submodule spec {spec.code}: "
            f"{len(spec.requirements)} requirements from {len(children)} sub-submodules"
        )
        return spec

    def _sub_submodule_as_submodule(self, module_number: str, code: str) -> SubmoduleSpec:
        parent_code = ".".join(code.split(".")[:2])
        child = self.load_sub_submodule_spec(module_number, parent_code, code)
        return SubmoduleSpec(
            code=child.code,
            title=child.title,
            module_name=child.module_name or f"Module {module_number}",
            applies_to=list(child.applies_to),
            description=child.description or child.title,
            requirements=list(child.requirements),
            micro_inject=list(child.micro_inject),
            capa_inject=list(child.capa_inject),
            traceability_inject=list(child.traceability_inject),
        )

    def find_submodule_spec_by_name(
        self,
        module_number: str,
        document_name: Optional[str] = None,
        sub_module_name: Optional[str] = None,
    ) -> Optional[SubmoduleSpec]:
        """
        Resolve a submodule spec from free-form names.

        Priority: sub-submodule code in the text, then submodule code or
        alias substring, then at least two significant (len > 3) words of
        the submodule name.  Returns None when nothing matches; callers
        fall back to generic generation.
        """
        try:
            module_spec = self.load_module_spec(module_number)
        except SpecNotFoundError as e:
            logger.warning(f"[LOADER] Cannot search module {module_number}: {e}")
            return None

        search_text = f"{document_name or ''} {sub_module_name or ''}".lower()
        logger.debug(f"[LOADER] Search text: '{search_text}'")

        match = SUB_SUBMODULE_CODE_RE.search(search_text)
        if match:
            code = match.group(1)
            try:
                spec = self._sub_submodule_as_submodule(module_number, code)
                logger.info(f"[LOADER] Sub-submodule match: {code} ({len(spec.requirements)} requirements)")
                return spec
            except SpecNotFoundError as e:
                logger.warning(f"[LOADER] Sub-submodule {code} not loadable: {e}")

        for ref in module_spec.submodules:
            if ref.code.lower() in search_text:
                reason = f"code {ref.code}"
            elif ref.alias and ref.alias.lower() in search_text:
                reason = f"alias '{ref.alias}'"
            else:
                continue
            try:
                spec = self.load_submodule_spec(module_number, ref.code)
                logger.info(f"[LOADER] Found {reason} match -> {ref.code}")
                return spec
            except SpecNotFoundError as e:
                logger.warning(f"[LOADER] Matched {reason} but spec failed to load: {e}")

        for ref in module_spec.submodules:
            words = [w for w in ref.name.lower().split() if len(w) > 3 and w in search_text]
            if len(words) >= 2:
                try:
                    spec = self.load_submodule_spec(module_number, ref.code)
                    logger.info(f"[LOADER] Keyword match: {ref.name} ({', '.join(words)})")
                    return spec
                except SpecNotFoundError as e:
                    logger.warning(f"[LOADER] Keyword match {ref.code} but spec failed to load: {e}")

        logger.warning(
            f"[LOADER] No submodule spec found for module {module_number} with search '{search_text.strip()}'. "
            f"Available: {[f'{s.code}: {s.name}' for s in module_spec.submodules]}"
        )
        return None

    def get_submodule_requirements(self, module_number: str, submodule_code: str) -> list[SubmoduleRequirement]:
        return list(self.load_submodule_spec(module_number, submodule_code).requirements)

    def get_mandatory_submodule_requirements(
        self, module_number: str, submodule_code: str
    ) -> list[SubmoduleRequirement]:
        return [r for r in self.get_submodule_requirements(module_number, submodule_code) if r.required]

    def get_micro_inject_categories(self, module_number: str, submodule_code: str) -> list[str]:
        try:
            return list(self.load_submodule_spec(module_number, submodule_code).micro_inject)
        except SpecNotFoundError:
            return []

    # ── Checklists ──────────────────────────────────────

    def load_module_checklist(self, module_number: str) -> ModuleChecklist:
        key = f"module_{module_number}"
        if key in self.cache.checklists:
            return self.cache.checklists[key]

        path = self.checklists_dir / f"module_{module_number}.json"
        data = self._load_json(path)
        if not data.get("module") or "sections" not in data:
            raise SpecNotFoundError(f"Invalid checklist structure in {path.name}")
        try:
            checklist = ModuleChecklist.model_validate(data)
        except ValidationError as e:
            raise SpecNotFoundError(f"Checklist for module {module_number} is invalid: {e}") from e

        self.cache.checklists[key] = checklist
        return checklist

    def load_all_checklists(self) -> dict[str, ModuleChecklist]:
        checklists: dict[str, ModuleChecklist] = {}
        for module_number in CHECKLIST_MODULES:
            try:
                checklists[module_number] = self.load_module_checklist(module_number)
            except SpecNotFoundError as e:
                logger.warning(f"[LOADER] Skipping checklist for module {module_number}: {e}")
        return checklists

    def get_all_requirements(self, module_number: str) -> list[ChecklistRequirement]:
        checklist = self.load_module_checklist(module_number)
        return [req for section in checklist.sections for req in section.requirements]

    def get_mandatory_requirements(self, module_number: str) -> list[ChecklistRequirement]:
        return [r for r in self.get_all_requirements(module_number) if r.mandatory]

    def find_requirements_by_keyword(self, module_number: str, keyword: str) -> list[ChecklistRequirement]:
        needle = keyword.lower()
        return [
            r
            for r in self.get_all_requirements(module_number)
            if any(needle in kw.lower() for kw in r.keywords) or needle in r.description.lower()
        ]

    # ── Micro-rules ─────────────────────────────────────

    def load_micro_rules(self, category: str) -> MicroRules:
        """Rules for one category; a missing file yields an empty rule set."""
        if category in self.cache.micro_rules:
            return self.cache.micro_rules[category]

        path = self.micro_rules_dir / f"{category}.json"
        try:
            data = self._load_json(path)
            if not data.get("category") or "rules" not in data:
                raise SpecNotFoundError(f"Invalid micro-rules structure in {path.name}")
            rules = MicroRules.model_validate(data)
        except (SpecNotFoundError, ValidationError) as e:
            logger.warning(f"[LOADER] Micro-rules for {category} not available ({e}); using empty set")
            rules = MicroRules(category=category, rules={})

        self.cache.micro_rules[category] = rules
        return rules

    def load_all_micro_rules(self) -> dict[str, MicroRules]:
        return {category: self.load_micro_rules(category) for category in MICRO_RULE_CATEGORIES}

    def get_relevant_micro_rules(self, categories: list[str]) -> dict[str, MicroRules]:
        """Rule sets for the given categories, skipping empty ones."""
        relevant: dict[str, MicroRules] = {}
        for category in categories:
            rules = self.load_micro_rules(category)
            if rules.rules:
                relevant[category] = rules
        return relevant

    # ── Templates ───────────────────────────────────────

    def load_template(self, filename: str) -> str:
        if filename in self.cache.templates:
            return self.cache.templates[filename]

        path = self.templates_dir / filename
        if not path.exists():
            raise SpecNotFoundError(f"Template {filename} not found")
        content = path.read_text(encoding="utf-8")
        self.cache.templates[filename] = content
        return content

    def get_module_templates(self, module_number: str) -> list[TemplateMetadata]:
        return [t for t in AVAILABLE_TEMPLATES if t.module == module_number]

    def select_template_metadata(
        self,
        module_number: str,
        sub_module_name: Optional[str] = None,
        document_name: Optional[str] = None,
    ) -> Optional[TemplateMetadata]:
        """
        Pick a bundled template.  Document-name rules come first; food safety,
        traceability and allergen policies never get a template.
        """
        def by_file(fragment: str) -> Optional[TemplateMetadata]:
            return next((t for t in AVAILABLE_TEMPLATES if fragment in t.file_path), None)

        if document_name:
            doc = document_name.lower()
            if "policy" in doc and any(k in doc for k in ("food safety", "traceability", "allergen")):
                logger.info("[TEMPLATE] Policy document detected - using generic structure")
                return None
            if "chemical" in doc and "control" in doc:
                return by_file("chemical")
            if "pest" in doc and "control" in doc:
                return by_file("pest")
            if "document control" in doc or ("document" in doc and "procedure" in doc):
                return by_file("document_control")

        if sub_module_name:
            sub = sub_module_name.lower()
            for t in AVAILABLE_TEMPLATES:
                if t.module == module_number and t.sub_module and sub in t.sub_module.lower():
                    return t
            for t in AVAILABLE_TEMPLATES:
                hits = [kw for kw in t.keywords if kw.lower() in sub]
                if t.module == module_number and len(hits) >= 2:
                    return t

        logger.info(f"[TEMPLATE] No specific template for Module {module_number}; using generic structure")
        return None

    def select_template(
        self,
        module_number: str,
        sub_module_name: Optional[str] = None,
        document_name: Optional[str] = None,
    ) -> Optional[str]:
        """Template text for the document, or None for the generic structure."""
        meta = self.select_template_metadata(module_number, sub_module_name, document_name)
        if meta is None:
            return None
        logger.info(f"[TEMPLATE] Selected: {meta.file_path}")
        return self.load_template(meta.file_path)


def _unique(items) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


@lru_cache()
def get_framework_loader() -> FrameworkLoader:
    """Return the process-wide default loader (singleton)."""
    return FrameworkLoader()
