from .logger import setup_logging
from .hashing import document_hash, generation_inputs_hash
from .codes import code_sort_key

__all__ = ["setup_logging", "document_hash", "generation_inputs_hash", "code_sort_key"]
