"""Framework — Primus GFS specification data and its loader."""

from primus_docgen.framework.loader import FrameworkCache, FrameworkLoader, get_framework_loader

__all__ = ["FrameworkCache", "FrameworkLoader", "get_framework_loader"]
