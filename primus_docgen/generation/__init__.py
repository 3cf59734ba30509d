"""Generation — questions, requirement mapping, prompts and retry feedback."""
