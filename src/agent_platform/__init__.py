"""Agent platform: knowledge-base retrieval and agent content generation service."""

__version__ = "0.1.0"
