"""OpenAI-compatible chat proxy in front of a one-shot text generation endpoint.

Non-streaming upstream results are replayed to streaming clients as a paced
sequence of SSE chunks (pseudo-streaming).
"""

__all__ = []
