"""Asynchronous LLM report service."""
