"""chatstreamd - conversation daemon streaming LLM turns over SSE."""

__version__ = "0.1.0"
