"""OpenAI-compatible chat-completions proxy backed by Vertex AI Gemini."""

__version__ = "1.0.0"
