"""
Audit fingerprints for generated documents.

``document_hash`` identifies the accepted text; ``generation_inputs_hash``
identifies the request (module, submodule, document name and answers), so two
runs with the same inputs can be compared even though the model output differs.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional


def document_hash(document: str) -> str:
    """SHA-256 of the document with line endings normalised to ``\\n``."""
    normalised = document.replace("\r\n", "\n").strip()
    return hashlib.sha256(normalised.encode("utf-8")).hexdigest()


def generation_inputs_hash(
    module_number: str,
    sub_module_name: Optional[str],
    document_name: Optional[str],
    answers: dict[str, Any],
) -> str:
    """SHA-256 over a canonical JSON form of the request; answer order does not matter."""
    payload = {
        "module": module_number,
        "submodule": sub_module_name,
        "document": document_name,
        # dates and other non-JSON answers render through str()
        "answers": answers,
    }
    canonical = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
