"""
OllamaAdapter - local inference server backend.

Speaks the /api/generate wire protocol:
- plain completions, streamed as NDJSON when a token callback is given
- JSON-schema constrained output via the "format" field
- vision completions via the "images" field, on a separately configured model
"""

import logging
import re
from typing import Optional, Sequence, Union

import httpx

from edugenie.adapters.schema import FLASHCARD_SCHEMA, QUIZ_SCHEMA, GenerationRequest
from edugenie.config import (
    CHAT_TEMPERATURE,
    DEFAULT_FLASHCARD_COUNT,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_VISION_MODEL,
    DEFAULT_QUIZ_COUNT,
    DEFAULT_TIMEOUT_SECONDS,
    STRUCTURED_TEMPERATURE,
    SUMMARY_TEMPERATURE,
    ChatMessage,
    Flashcard,
    QuizQuestion,
)
from edugenie.core import (
    BackendError,
    BackendHTTPError,
    ModelNotFound,
    TokenCallback,
    backend_retry,
    call_generate,
    emit_token,
    post_json,
)
from edugenie.parsers import parse_flashcards, parse_quiz

logger = logging.getLogger(__name__)

TUTOR_SYSTEM_PROMPT = (
    "You are EduGenie, a friendly and patient AI tutor. Engage in natural "
    "conversation, explain concepts clearly with examples and analogies, and "
    "help the student learn."
)
NOTE_TAKER_SYSTEM_PROMPT = (
    "You are a professional note-taker. Extract the core essence of the "
    "provided text while maintaining factual accuracy."
)
FLASHCARD_SYSTEM_PROMPT = (
    "You are an expert at creating educational flashcards. You must respond "
    "with a valid JSON array only, no other text."
)
QUIZ_SYSTEM_PROMPT = (
    "You are an expert at creating educational quizzes. You must respond with "
    "a valid JSON array only, no other text. The correctAnswer must exactly "
    "match one of the options."
)

SUMMARIZE_PROMPT = (
    "Summarize these study notes into clear bullet points and highlight the "
    "most important concepts:\n\n{notes}"
)
IMAGE_SUMMARY_PROMPT = (
    "Extract the text from this image of notes and summarize it into clear "
    "bullet points. Highlight key terms and main takeaways."
)

_DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


def strip_data_url(base64_image: str) -> str:
    """Return raw base64, dropping a data:image/...;base64, prefix if present."""
    return _DATA_URL_PREFIX.sub("", base64_image, count=1)


def render_history(history: Union[str, Sequence[ChatMessage]]) -> str:
    """Render prior turns as "Role: content" blocks separated by blank lines."""
    if isinstance(history, str):
        return history.strip()
    return "\n\n".join(
        f"{message.role.capitalize()}: {message.content}" for message in history
    )


def build_chat_prompt(message: str, history: Union[str, Sequence[ChatMessage]] = "") -> str:
    turns = [render_history(history)] if history else []
    turns.append(f"User: {message}")
    turns.append("Assistant:")
    return "\n\n".join(turn for turn in turns if turn)


def _content_or_placeholder(content: str) -> str:
    return content or "No additional content provided."


def build_flashcard_prompt(topic: str, content: str, count: int) -> str:
    return (
        f"Generate exactly {count} flashcards based on the following topic and content.\n\n"
        f"Topic: {topic}\n"
        f"Content: {_content_or_placeholder(content)}\n\n"
        "IMPORTANT: Return ONLY a JSON array. Do not include any explanation, "
        "markdown, or text outside the JSON array.\n"
        'Each flashcard must have exactly two fields: "front" and "back".'
    )


def build_quiz_prompt(topic: str, content: str, count: int) -> str:
    return (
        f"Generate exactly {count} multiple choice quiz questions based on the "
        "following topic and content.\n\n"
        f"Topic: {topic}\n"
        f"Content: {_content_or_placeholder(content)}\n\n"
        "IMPORTANT: Return ONLY a JSON array. Do not include any explanation, "
        "markdown, or text outside the JSON array.\n"
        'Each question must have: "question", "options" (array of 4 strings), '
        '"correctAnswer" (must match one option exactly), and "explanation".'
    )


class OllamaAdapter:
    """
    Local implementation of the TextBackend protocol.

    Design decisions:
    - Text and vision models are configured independently
    - Structured output is requested with a JSON schema, not just prompt text
    - Unreachable-server errors get a bounded retry with exponential backoff
    - No image generation: include_images is accepted and ignored
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        model: str = DEFAULT_OLLAMA_MODEL,
        vision_model: str = DEFAULT_OLLAMA_VISION_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_attempts: int = 3,
        retry_min_wait: float = 1,
        retry_max_wait: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.vision_model = vision_model
        self.timeout_seconds = timeout_seconds
        self._retry_attempts = retry_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._transport = transport

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/api/generate"

    async def _generate(
        self,
        request: GenerationRequest,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Send one request, streaming when a token callback is supplied.

        A streamed call is only retried while nothing has reached the
        callback yet, so the caller never sees a token twice.
        """
        delivered = False

        async def forward(token: str) -> None:
            nonlocal delivered
            delivered = True
            await emit_token(on_token, token)

        @backend_retry(
            self._retry_attempts,
            self._retry_min_wait,
            self._retry_max_wait,
            allow=lambda: not delivered,
        )
        async def generate_with_retry() -> str:
            return await call_generate(
                self.generate_url,
                request.to_payload(),
                stream=on_token is not None,
                on_token=forward if on_token is not None else None,
                timeout_seconds=self.timeout_seconds,
                transport=self._transport,
            )

        try:
            return await generate_with_retry()
        except ModelNotFound:
            raise
        except BackendHTTPError as e:
            if e.status_code == 404:
                raise ModelNotFound(
                    request.model_id,
                    hint=f"Please install it with: ollama pull {request.model_id}",
                    body_excerpt=e.body_excerpt,
                ) from e
            raise

    async def explain(
        self,
        topic: str,
        context: Union[str, Sequence[ChatMessage]] = "",
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """Answer a chat turn as a tutor, given earlier turns as context."""
        request = GenerationRequest(
            model_id=self.model,
            prompt=build_chat_prompt(topic, context),
            system=TUTOR_SYSTEM_PROMPT,
            temperature=CHAT_TEMPERATURE,
        )
        return await self._generate(request, on_token)

    async def summarize_notes(self, text: str, on_token: Optional[TokenCallback] = None) -> str:
        request = GenerationRequest(
            model_id=self.model,
            prompt=SUMMARIZE_PROMPT.format(notes=text),
            system=NOTE_TAKER_SYSTEM_PROMPT,
            temperature=SUMMARY_TEMPERATURE,
        )
        return await self._generate(request, on_token)

    async def summarize_image(
        self,
        base64_image: str,
        mime_type: str,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Transcribe and summarize a photo of notes with the vision model.

        Reached directly from upload flows, so backend failures come back as
        a readable message instead of an exception.
        """
        request = GenerationRequest(
            model_id=self.vision_model,
            prompt=IMAGE_SUMMARY_PROMPT,
            images=[strip_data_url(base64_image)],
            temperature=SUMMARY_TEMPERATURE,
        )
        try:
            return await self._generate(request, on_token)
        except BackendError as e:
            logger.error("Image summarization (%s) failed: %s", mime_type, e)
            return (
                "Failed to process the image. Make sure you have a vision model "
                f"like '{self.vision_model}' installed in Ollama."
            )

    async def generate_flashcards(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_FLASHCARD_COUNT,
        include_images: bool = False,
    ) -> list[Flashcard]:
        request = GenerationRequest(
            model_id=self.model,
            prompt=build_flashcard_prompt(topic, content, count),
            system=FLASHCARD_SYSTEM_PROMPT,
            output_format=FLASHCARD_SCHEMA,
            temperature=STRUCTURED_TEMPERATURE,
        )
        return parse_flashcards(await self._generate(request))

    async def generate_quiz(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_QUIZ_COUNT,
        include_images: bool = False,
    ) -> list[QuizQuestion]:
        request = GenerationRequest(
            model_id=self.model,
            prompt=build_quiz_prompt(topic, content, count),
            system=QUIZ_SYSTEM_PROMPT,
            output_format=QUIZ_SCHEMA,
            temperature=STRUCTURED_TEMPERATURE,
        )
        return parse_quiz(await self._generate(request))

    async def preload(self) -> None:
        """Load model weights ahead of the first real request. Never raises."""
        logger.info("Preloading model %s...", self.model)
        try:
            await post_json(
                self.generate_url,
                {"model": self.model, "prompt": "", "stream": False},
                timeout_seconds=self.timeout_seconds,
                transport=self._transport,
            )
        except (BackendError, httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Failed to preload model %s (ignorable): %s", self.model, e)
            return
        logger.info("Model %s preloaded.", self.model)
