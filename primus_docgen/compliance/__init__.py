"""Compliance — crosswalk, micro-rule lint and compliance scoring."""
