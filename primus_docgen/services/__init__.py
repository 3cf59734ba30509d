"""Services — LLM access."""
