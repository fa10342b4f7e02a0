"""
HuggingFace Inference API adapter.

Hosted text and image generation. Text goes through
huggingface_hub.AsyncInferenceClient; images are fetched with httpx directly
because the raw response content type decides whether we got an image.

Key differences from OllamaAdapter:
- No streaming: hosted text calls return once, on_token gets the whole text
- No JSON schema: structured output is requested in the prompt only
- No vision model: summarize_image always answers with the fallback text
- Images are best effort: every failure is logged and becomes None
"""

import asyncio
import base64
import logging
from typing import Optional, Sequence, TypeVar, Union

import httpx
from huggingface_hub import AsyncInferenceClient
from huggingface_hub.errors import HfHubHTTPError, InferenceTimeoutError

from edugenie.config import (
    CHAT_TEMPERATURE,
    DEFAULT_FLASHCARD_COUNT,
    DEFAULT_HF_BASE_URL,
    DEFAULT_HF_IMAGE_MODEL,
    DEFAULT_HF_TEXT_MODEL,
    DEFAULT_QUIZ_COUNT,
    DEFAULT_TIMEOUT_SECONDS,
    HF_MAX_NEW_TOKENS,
    STRUCTURED_TEMPERATURE,
    SUMMARY_TEMPERATURE,
    ChatMessage,
    Flashcard,
    QuizQuestion,
)
from edugenie.core import (
    BackendEmptyResponse,
    BackendHTTPError,
    BackendNotConfigured,
    BackendUnreachable,
    ModelNotFound,
    TokenCallback,
    backend_retry,
    emit_token,
    excerpt,
)
from edugenie.adapters.ollama import build_chat_prompt
from edugenie.parsers import parse_flashcards, parse_quiz

logger = logging.getLogger(__name__)

Record = TypeVar("Record", Flashcard, QuizQuestion)

TUTOR_SYSTEM_PROMPT = (
    "You are EduGenie, a friendly AI tutor. Explain concepts clearly with "
    "examples and analogies."
)
SUMMARY_SYSTEM_PROMPT = "You are a helpful study assistant that writes concise notes."
FLASHCARD_SYSTEM_PROMPT = (
    "You are a teacher. Create educational flashcards. Return ONLY a JSON "
    "array of objects with 'front' and 'back' properties."
)
QUIZ_SYSTEM_PROMPT = (
    "You are a quiz master. Create multiple choice questions. Return ONLY a "
    "JSON array of objects."
)

IMAGE_PROMPT_TEMPLATE = (
    "educational illustration of {subject}, high quality, clean background, "
    "4k resolution"
)

INST_CLOSE = "[/INST]"


def wrap_instruction(prompt: str, system: Optional[str] = None) -> str:
    """Wrap a prompt in the [INST] delimiters instruct models are trained on."""
    preamble = f"{system}\n\n" if system else ""
    return f"<s>[INST] {preamble}{prompt} {INST_CLOSE}"


def strip_instruction(generated: str) -> str:
    """Keep only what follows the last [/INST], without the </s> marker."""
    return generated.split(INST_CLOSE)[-1].replace("</s>", "").strip()


def _http_status(error: HfHubHTTPError) -> Optional[int]:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


class HuggingFaceAdapter:
    """
    Hosted implementation of the TextBackend and ImageBackend protocols.

    Design decisions:
    - API key is optional at construction; text calls without one raise
      BackendNotConfigured, image calls return None
    - Models are addressed as <base_url>/models/<model> so a self-hosted
      inference endpoint can stand in for the public router
    - include_images on structured generation triggers one concurrent batch

    Usage:
        adapter = HuggingFaceAdapter(api_key="hf_xxx")
        url = await adapter.generate_image("the water cycle")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        text_model: str = DEFAULT_HF_TEXT_MODEL,
        image_model: str = DEFAULT_HF_IMAGE_MODEL,
        base_url: str = DEFAULT_HF_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_new_tokens: int = HF_MAX_NEW_TOKENS,
        retry_attempts: int = 3,
        retry_min_wait: float = 1,
        retry_max_wait: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key or None
        self.text_model = text_model
        self.image_model = image_model
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.max_new_tokens = max_new_tokens
        self._retry_attempts = retry_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self._transport = transport
        self._client: Optional[AsyncInferenceClient] = None
        if self._api_key:
            self._client = AsyncInferenceClient(
                provider="hf-inference",
                token=self._api_key,
                timeout=timeout_seconds,
            )

    @property
    def is_configured(self) -> bool:
        return self._api_key is not None

    def model_url(self, model: str) -> str:
        return f"{self.base_url}/models/{model}"

    # ─────────────────────────────────────────────────────────────────
    # TEXT
    # ─────────────────────────────────────────────────────────────────

    async def generate_text(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = STRUCTURED_TEMPERATURE,
    ) -> str:
        """
        Run one non-streaming completion against the hosted text model.

        Raises:
            BackendNotConfigured: no API key
            BackendUnreachable: timeout or connection failure (retried)
            ModelNotFound: the model URL answered 404
            BackendHTTPError: any other HTTP failure
            BackendEmptyResponse: the model produced no text
        """
        if self._client is None:
            raise BackendNotConfigured("HuggingFace API key not found.")

        client = self._client
        model = self.model_url(self.text_model)
        inputs = wrap_instruction(prompt, system)

        @backend_retry(self._retry_attempts, self._retry_min_wait, self._retry_max_wait)
        async def generate_with_retry() -> str:
            try:
                return await client.text_generation(
                    inputs,
                    model=model,
                    max_new_tokens=self.max_new_tokens,
                    temperature=temperature,
                )
            except InferenceTimeoutError as e:
                raise BackendUnreachable(
                    f"HuggingFace timeout for {self.text_model}: {e}"
                ) from e
            except HfHubHTTPError as e:
                status = _http_status(e)
                if status == 404:
                    raise ModelNotFound(self.text_model, body_excerpt=excerpt(str(e))) from e
                raise BackendHTTPError(
                    status or 0,
                    excerpt(str(e)),
                    f"HuggingFace API error for {self.text_model}: {e}",
                ) from e
            except Exception as e:
                # Connection errors come from whichever HTTP stack the client ships with
                raise BackendUnreachable(
                    f"Failed to reach HuggingFace for {self.text_model}: {e}"
                ) from e

        generated = strip_instruction(await generate_with_retry() or "")
        if not generated:
            raise BackendEmptyResponse(f"HuggingFace returned no text for {self.text_model}")
        return generated

    async def _respond(
        self,
        prompt: str,
        system: str,
        temperature: float,
        on_token: Optional[TokenCallback],
    ) -> str:
        text = await self.generate_text(prompt, system, temperature=temperature)
        if on_token is not None:
            await emit_token(on_token, text)
        return text

    async def explain(
        self,
        topic: str,
        context: Union[str, Sequence[ChatMessage]] = "",
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        return await self._respond(
            build_chat_prompt(topic, context), TUTOR_SYSTEM_PROMPT, CHAT_TEMPERATURE, on_token
        )

    async def summarize_notes(self, text: str, on_token: Optional[TokenCallback] = None) -> str:
        prompt = f"Summarize the following notes into clear bullet points:\n\n{text}"
        return await self._respond(prompt, SUMMARY_SYSTEM_PROMPT, SUMMARY_TEMPERATURE, on_token)

    async def summarize_image(
        self,
        base64_image: str,
        mime_type: str,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        logger.warning("Image summarization (%s) is not available on HuggingFace", mime_type)
        return (
            "Failed to process the image. The hosted text model cannot read "
            "images; bind image summaries to a local vision model instead."
        )

    async def generate_flashcards(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_FLASHCARD_COUNT,
        include_images: bool = False,
    ) -> list[Flashcard]:
        prompt = (
            f"Generate {count} flashcards about: Topic: {topic}. Context: {content}.\n"
            f'Return exactly {count} flashcards in this format: [{{"front": "...", "back": "..."}}]'
        )
        cards = parse_flashcards(await self.generate_text(prompt, FLASHCARD_SYSTEM_PROMPT))
        if include_images:
            cards = await self.attach_images(cards, [card.front for card in cards])
        return cards

    async def generate_quiz(
        self,
        topic: str,
        content: str = "",
        count: int = DEFAULT_QUIZ_COUNT,
        include_images: bool = False,
    ) -> list[QuizQuestion]:
        prompt = (
            f"Generate a {count}-question quiz about: Topic: {topic}. Content: {content}.\n"
            f"Return exactly {count} questions in this format: "
            '[{"question": "...", "options": ["A", "B", "C", "D"], '
            '"correctAnswer": "...", "explanation": "..."}]'
        )
        questions = parse_quiz(await self.generate_text(prompt, QUIZ_SYSTEM_PROMPT))
        if include_images:
            questions = await self.attach_images(questions, [q.question for q in questions])
        return questions

    async def preload(self) -> None:
        """Nothing to warm up: hosted models load on the first request."""
        return None

    # ─────────────────────────────────────────────────────────────────
    # IMAGES
    # ─────────────────────────────────────────────────────────────────

    async def generate_image(self, prompt: str) -> Optional[str]:
        """
        Generate an illustration for a study item.

        Returns a data:<type>;base64,... URL, or None when no key is set,
        the request fails, or the response is not an image.
        """
        if not self.is_configured:
            logger.warning("HuggingFace API key not found. Images will not be generated.")
            return None

        url = self.model_url(self.image_model)
        headers = {"Authorization": f"Bearer {self._api_key}"}
        body = {"inputs": IMAGE_PROMPT_TEMPLATE.format(subject=prompt)}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, json=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Image generation failed: %s", e)
            return None

        if response.status_code >= 400:
            logger.warning(
                "Image generation failed (%d): %s",
                response.status_code, excerpt(response.text),
            )
            return None

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            logger.warning(
                "Image generation returned non-image response (%s): %s",
                content_type or "no content type", excerpt(response.text),
            )
            return None

        mime = content_type.split(";")[0].strip()
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{mime};base64,{encoded}"

    async def batch_generate_images(self, prompts: Sequence[str]) -> list[Optional[str]]:
        """Generate all images concurrently; results line up with prompts."""
        results = await asyncio.gather(
            *(self.generate_image(prompt) for prompt in prompts),
            return_exceptions=True,
        )
        images: list[Optional[str]] = []
        for prompt, result in zip(prompts, results):
            if isinstance(result, BaseException):
                logger.error("Image generation for %r raised: %s", excerpt(prompt, 60), result)
                images.append(None)
            else:
                images.append(result)
        return images

    async def attach_images(self, records: list[Record], prompts: Sequence[str]) -> list[Record]:
        images = await self.batch_generate_images(prompts)
        return [
            record.model_copy(update={"image_url": image}) if image else record
            for record, image in zip(records, images)
        ]
