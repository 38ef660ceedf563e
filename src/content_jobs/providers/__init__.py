"""Adapters for external services: LLM, keyword research, HTTP, blob storage."""
