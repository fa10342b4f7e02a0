"""
Backend and collaborator Protocols - the contracts the Coordinator relies on.

This is the WHAT (interface), not the HOW (implementation).
See ollama.py and huggingface.py for concrete backends.
"""

from typing import Any, Optional, Protocol, Sequence, Union

from edugenie.adapters.schema import Document, ProcessedFile
from edugenie.config import ChatMessage, Flashcard, QuizQuestion
from edugenie.core import TokenCallback


class TextBackend(Protocol):
    """
    Contract for backends that serve the text capabilities.

    Any method may raise a BackendError subclass except summarize_image,
    which returns a fallback string, and preload, which never raises.
    """

    async def explain(
        self,
        topic: str,
        context: Union[str, Sequence[ChatMessage]] = "",
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        ...

    async def summarize_notes(
        self, text: str, on_token: Optional[TokenCallback] = None
    ) -> str:
        ...

    async def summarize_image(
        self,
        base64_image: str,
        mime_type: str,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        ...

    async def generate_flashcards(
        self, topic: str, content: str, count: int, include_images: bool = False
    ) -> list[Flashcard]:
        ...

    async def generate_quiz(
        self, topic: str, content: str, count: int, include_images: bool = False
    ) -> list[QuizQuestion]:
        ...

    async def preload(self) -> None:
        ...


class ImageBackend(Protocol):
    """
    Contract for best-effort image generation.

    Never raises for backend trouble: a missing image is None.
    """

    async def generate_image(self, prompt: str) -> Optional[str]:
        ...

    async def batch_generate_images(self, prompts: Sequence[str]) -> list[Optional[str]]:
        ...


class DocumentStore(Protocol):
    """Narrow view of the vector store used for uploaded study material."""

    async def add_documents(self, documents: Sequence[Document]) -> None:
        ...

    async def similarity_search(self, query: str, k: int) -> list[Document]:
        ...

    async def similarity_search_with_threshold(
        self, query: str, k: int, max_distance: float
    ) -> list[Document]:
        ...


class FileProcessor(Protocol):
    """Turns an uploaded file into plain text."""

    async def process_file(self, file: Any) -> ProcessedFile:
        ...
