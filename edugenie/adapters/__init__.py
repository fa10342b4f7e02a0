"""
Adapters for study-content backends.

Provider-agnostic architecture: Protocol defines WHAT, implementations define HOW.
"""

from .base import DocumentStore, FileProcessor, ImageBackend, TextBackend
from .huggingface import HuggingFaceAdapter
from .ollama import OllamaAdapter

__all__ = [
    "DocumentStore",
    "FileProcessor",
    "HuggingFaceAdapter",
    "ImageBackend",
    "OllamaAdapter",
    "TextBackend",
]
