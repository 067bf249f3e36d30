"""LLM provider adapters and selection."""
