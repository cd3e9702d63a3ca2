"""
LLM Module - Ollama client for local grading and summary inference.
"""
from .ollama_client import OllamaClient

__all__ = ["OllamaClient"]
