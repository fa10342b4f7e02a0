"""
Coordinator - routes each study capability to the backend bound to it.

The binding table is declarative: capability -> adapter name. Swapping which
backend serves flashcards is a one-line change to the table, not a code edit.
The table is validated at construction and read-only afterwards.

Image enrichment is best effort. A failed image leaves the record as it was;
a failed text generation propagates to the caller.
"""

import logging
import time
import uuid
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, TypeVar, Union

import httpx

from edugenie.adapters.huggingface import HuggingFaceAdapter
from edugenie.adapters.ollama import OllamaAdapter
from edugenie.adapters.schema import Document
from edugenie.config import (
    DEFAULT_FLASHCARD_COUNT,
    DEFAULT_QUIZ_COUNT,
    BackendSettings,
    ChatMessage,
    Conversation,
    Flashcard,
    QuizQuestion,
)
from edugenie.core import TokenCallback, emit_token

logger = logging.getLogger(__name__)

Record = TypeVar("Record", Flashcard, QuizQuestion)

MEDIA_LECTURE_GUIDANCE = (
    "Media summarization is not available with the configured backends. "
    "Please paste the transcript text instead to get a summary."
)


class Capability(str, Enum):
    EXPLAIN = "explain"
    SUMMARIZE = "summarize"
    SUMMARIZE_IMAGE = "summarize_image"
    FLASHCARDS = "flashcards"
    QUIZ = "quiz"
    IMAGE = "image"
    PRELOAD = "preload"


DEFAULT_BINDINGS: Mapping[Capability, str] = MappingProxyType({
    Capability.EXPLAIN: "ollama",
    Capability.SUMMARIZE: "ollama",
    Capability.SUMMARIZE_IMAGE: "ollama",
    Capability.FLASHCARDS: "ollama",
    Capability.QUIZ: "ollama",
    Capability.PRELOAD: "ollama",
    Capability.IMAGE: "huggingface",
})


class Coordinator:
    """
    Single entry point for every study feature.

    Usage:
        coordinator = build_default_coordinator()
        cards = await coordinator.generate_flashcards("Photosynthesis", count=5)
    """

    def __init__(
        self,
        adapters: Mapping[str, Any],
        bindings: Optional[Mapping[Union[Capability, str], str]] = None,
        document_store: Any = None,
        file_processor: Any = None,
    ):
        """
        Args:
            adapters: name -> adapter instance
            bindings: capability -> adapter name; missing capabilities fall
                back to DEFAULT_BINDINGS
            document_store: optional DocumentStore for uploaded material
            file_processor: optional FileProcessor for uploads

        Raises:
            ValueError: a binding names an adapter that was not supplied
        """
        self._adapters: dict[str, Any] = dict(adapters)

        table = dict(DEFAULT_BINDINGS)
        for capability, name in (bindings or {}).items():
            table[Capability(capability)] = name

        unknown = {
            capability.value: name
            for capability, name in table.items()
            if name not in self._adapters
        }
        if unknown:
            raise ValueError(
                f"Bindings reference unknown adapters: {unknown}. "
                f"Available: {sorted(self._adapters)}"
            )
        self._bindings: Mapping[Capability, str] = MappingProxyType(table)

        self.document_store = document_store
        self.file_processor = file_processor

    @classmethod
    def from_settings(
        cls,
        settings: BackendSettings,
        bindings: Optional[Mapping[Union[Capability, str], str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        document_store: Any = None,
        file_processor: Any = None,
    ) -> "Coordinator":
        retry = {
            "retry_attempts": settings.retry_attempts,
            "retry_min_wait": settings.retry_min_wait,
            "retry_max_wait": settings.retry_max_wait,
        }
        adapters = {
            "ollama": OllamaAdapter(
                base_url=settings.ollama_base_url,
                model=settings.ollama_model,
                vision_model=settings.ollama_vision_model,
                timeout_seconds=settings.timeout_seconds,
                transport=transport,
                **retry,
            ),
            "huggingface": HuggingFaceAdapter(
                api_key=settings.hf_api_key,
                text_model=settings.hf_text_model,
                image_model=settings.hf_image_model,
                base_url=settings.hf_base_url,
                timeout_seconds=settings.timeout_seconds,
                transport=transport,
                **retry,
            ),
        }
        return cls(
            adapters,
            bindings=bindings,
            document_store=document_store,
            file_processor=file_processor,
        )

    @property
    def bindings(self) -> Mapping[Capability, str]:
        return self._bindings

    def adapter_for(self, capability: Capability) -> Any:
        return self._adapters[self._bindings[capability]]

    # ─────────────────────────────────────────────────────────────────
    # TEXT
    # ─────────────────────────────────────────────────────────────────

    async def explain_concept(
        self,
        topic: str,
        context: Union[str, Sequence[ChatMessage]] = "",
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        return await self.adapter_for(Capability.EXPLAIN).explain(topic, context, on_token=on_token)

    async def chat(
        self,
        conversation: Conversation,
        message: str,
        on_token: Optional[TokenCallback] = None,
    ) -> ChatMessage:
        """
        Run one tutoring turn.

        The reply is appended to the conversation as it streams, so a UI
        holding the conversation sees it grow. If the backend fails the
        partial reply is removed again, so the next turn's history holds
        only completed exchanges.
        """
        history = list(conversation.messages)
        conversation.add_user_message(message)
        reply = conversation.start_assistant_message()

        async def forward(token: str) -> None:
            reply.append(token)
            if on_token is not None:
                await emit_token(on_token, token)

        try:
            await self.explain_concept(message, history, on_token=forward)
        except BaseException:
            conversation.discard(reply)
            raise
        finally:
            reply.finish()
        return reply

    async def summarize_notes(self, text: str, on_token: Optional[TokenCallback] = None) -> str:
        return await self.adapter_for(Capability.SUMMARIZE).summarize_notes(text, on_token=on_token)

    async def summarize_image(
        self,
        base64_image: str,
        mime_type: str,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        return await self.adapter_for(Capability.SUMMARIZE_IMAGE).summarize_image(
            base64_image, mime_type, on_token=on_token
        )

    async def summarize_lecture(
        self,
        content: str,
        mode: str = "text",
        mime_type: Optional[str] = None,
    ) -> str:
        """
        Summarize a lecture transcript.

        Raises:
            ValueError: mode is neither "text" nor "media"
        """
        if mode == "media":
            logger.info("Media lecture (%s) requested; returning guidance", mime_type or "unknown type")
            return MEDIA_LECTURE_GUIDANCE
        if mode != "text":
            raise ValueError(f"Unknown lecture mode '{mode}'. Expected 'text' or 'media'.")
        return await self.summarize_notes(content)

    async def preload_model(self) -> None:
        await self.adapter_for(Capability.PRELOAD).preload()

    # ─────────────────────────────────────────────────────────────────
    # STRUCTURED GENERATION
    # ─────────────────────────────────────────────────────────────────

    async def generate_flashcards(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_FLASHCARD_COUNT,
        include_images: bool = False,
    ) -> list[Flashcard]:
        cards = await self.adapter_for(Capability.FLASHCARDS).generate_flashcards(
            topic, content, count, include_images=include_images
        )
        if include_images:
            cards = await self._enrich(cards, lambda card: card.front)
        return cards

    async def generate_quiz(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_QUIZ_COUNT,
        include_images: bool = False,
    ) -> list[QuizQuestion]:
        questions = await self.adapter_for(Capability.QUIZ).generate_quiz(
            topic, content, count, include_images=include_images
        )
        if include_images:
            questions = await self._enrich(questions, lambda question: question.question)
        return questions

    async def _enrich(self, records: list[Record], image_prompt) -> list[Record]:
        """Fill in missing images with one batch request, merged by position."""
        pending = [i for i, record in enumerate(records) if record.image_url is None]
        if not pending:
            return records

        try:
            images = await self.adapter_for(Capability.IMAGE).batch_generate_images(
                [image_prompt(records[i]) for i in pending]
            )
        except Exception as e:
            logger.warning("Image batch failed, returning records without images: %s", e)
            return records

        enriched = list(records)
        for i, image in zip(pending, images):
            if image:
                enriched[i] = records[i].model_copy(update={"image_url": image})
        return enriched

    # ─────────────────────────────────────────────────────────────────
    # IMAGES
    # ─────────────────────────────────────────────────────────────────

    async def generate_image(self, prompt: str) -> Optional[str]:
        return await self.adapter_for(Capability.IMAGE).generate_image(prompt)

    async def enhance_flashcard_with_image(self, card: Flashcard) -> Flashcard:
        """Return a copy of the card with an illustration of its front, if one could be made."""
        image = await self.generate_image(card.front)
        return card.model_copy(update={"image_url": image or card.image_url})

    async def enhance_quiz_with_image(self, question: QuizQuestion) -> QuizQuestion:
        image = await self.generate_image(question.question)
        return question.model_copy(update={"image_url": image or question.image_url})

    # ─────────────────────────────────────────────────────────────────
    # STUDY MATERIAL
    # ─────────────────────────────────────────────────────────────────

    async def index_file(self, file: Any) -> Document:
        """
        Extract text from an uploaded file and add it to the document store.

        Raises:
            RuntimeError: no file processor or document store configured
        """
        if self.file_processor is None:
            raise RuntimeError("No file processor configured.")
        if self.document_store is None:
            raise RuntimeError("No document store configured.")

        processed = await self.file_processor.process_file(file)
        document = Document(
            id=f"doc-{uuid.uuid4().hex[:12]}",
            content=processed.content,
            metadata={
                "filename": processed.name,
                "type": processed.type,
                "processed_at": time.time(),
            },
        )
        await self.document_store.add_documents([document])
        logger.info("Indexed %s (%d chars)", processed.name, len(processed.content))
        return document

    async def search_documents(
        self,
        query: str,
        k: int = 4,
        max_distance: Optional[float] = None,
    ) -> list[Document]:
        if self.document_store is None:
            raise RuntimeError("No document store configured.")
        if max_distance is None:
            return await self.document_store.similarity_search(query, k)
        return await self.document_store.similarity_search_with_threshold(query, k, max_distance)


def build_default_coordinator(**kwargs: Any) -> Coordinator:
    """Build a Coordinator from environment settings, read once."""
    return Coordinator.from_settings(BackendSettings.from_env(), **kwargs)
