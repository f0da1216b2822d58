"""Pydantic models for API requests/responses and internal value types."""
