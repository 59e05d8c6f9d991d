"""Prompt templates and response parsers for the pipeline's LLM roles."""
