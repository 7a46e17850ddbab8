"""Chat front end for a Dify-compatible conversational-AI provider."""

__version__ = "0.1.0"
