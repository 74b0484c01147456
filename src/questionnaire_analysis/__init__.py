"""Privacy-gated LLM analysis engine for questionnaire responses."""

__version__ = "0.1.0"
