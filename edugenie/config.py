"""
Configuration constants and Pydantic models for edugenie.
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS - Overridable via environment
# ─────────────────────────────────────────────────────────────────────

DEFAULT_OLLAMA_BASE_URL: str = "http://localhost:11434"
# llama3.2 is widely available; llama3.1 follows JSON schemas more reliably
DEFAULT_OLLAMA_MODEL: str = "llama3.2"
DEFAULT_OLLAMA_VISION_MODEL: str = "llava"

DEFAULT_HF_BASE_URL: str = "https://router.huggingface.co/hf-inference"
DEFAULT_HF_TEXT_MODEL: str = "mistralai/Mistral-7B-Instruct-v0.2"
DEFAULT_HF_IMAGE_MODEL: str = "stabilityai/stable-diffusion-xl-base-1.0"

DEFAULT_TIMEOUT_SECONDS: int = 300  # 5 minutes
DEFAULT_FLASHCARD_COUNT: int = 8
DEFAULT_QUIZ_COUNT: int = 5


# ─────────────────────────────────────────────────────────────────────
# INTERNAL CONSTANTS
# ─────────────────────────────────────────────────────────────────────

CHAT_TEMPERATURE: float = 0.8
SUMMARY_TEMPERATURE: float = 0.3
STRUCTURED_TEMPERATURE: float = 0.7

HF_MAX_NEW_TOKENS: int = 1000
ERROR_EXCERPT_CHARS: int = 200
QUIZ_OPTION_COUNT: int = 4


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def _env_int(key: str, default: int) -> int:
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def get_retry_attempts() -> int:
    """
    Get max attempts for unreachable-backend retries.

    Set EDUGENIE_RETRY_ATTEMPTS in .env (default: 3).
    """
    return _env_int("EDUGENIE_RETRY_ATTEMPTS", 3)


def get_retry_min_wait() -> int:
    """Minimum wait between retries in seconds (EDUGENIE_RETRY_MIN_WAIT, default 1)."""
    return _env_int("EDUGENIE_RETRY_MIN_WAIT", 1)


def get_retry_max_wait() -> int:
    """Maximum wait between retries in seconds (EDUGENIE_RETRY_MAX_WAIT, default 10)."""
    return _env_int("EDUGENIE_RETRY_MAX_WAIT", 10)


def get_timeout_seconds() -> int:
    """Per-request timeout (EDUGENIE_TIMEOUT_SECONDS, default 300)."""
    return _env_int("EDUGENIE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)


def get_ollama_base_url() -> str:
    return os.environ.get("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL


def get_ollama_model() -> str:
    return os.environ.get("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL


def get_ollama_vision_model() -> str:
    return os.environ.get("OLLAMA_VISION_MODEL") or DEFAULT_OLLAMA_VISION_MODEL


def get_hf_api_key() -> Optional[str]:
    """
    Get HuggingFace API key from environment.

    HUGGINGFACE_API_KEY wins; HF_TOKEN is accepted for Spaces compatibility.
    """
    return os.environ.get("HUGGINGFACE_API_KEY") or os.environ.get("HF_TOKEN")


def get_hf_base_url() -> str:
    return os.environ.get("HF_BASE_URL") or DEFAULT_HF_BASE_URL


def get_hf_text_model() -> str:
    return os.environ.get("HF_TEXT_MODEL") or DEFAULT_HF_TEXT_MODEL


def get_hf_image_model() -> str:
    return os.environ.get("HF_IMAGE_MODEL") or DEFAULT_HF_IMAGE_MODEL


class BackendSettings(BaseModel):
    """
    Everything needed to build the backend adapters.

    Read once at startup via from_env() and handed to the Coordinator, so
    tests can build several coordinators with different bindings side by side.
    """
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_vision_model: str = DEFAULT_OLLAMA_VISION_MODEL
    hf_api_key: Optional[str] = None
    hf_base_url: str = DEFAULT_HF_BASE_URL
    hf_text_model: str = DEFAULT_HF_TEXT_MODEL
    hf_image_model: str = DEFAULT_HF_IMAGE_MODEL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retry_attempts: int = 3
    retry_min_wait: float = 1
    retry_max_wait: float = 10

    @classmethod
    def from_env(cls) -> "BackendSettings":
        return cls(
            ollama_base_url=get_ollama_base_url(),
            ollama_model=get_ollama_model(),
            ollama_vision_model=get_ollama_vision_model(),
            hf_api_key=get_hf_api_key(),
            hf_base_url=get_hf_base_url(),
            hf_text_model=get_hf_text_model(),
            hf_image_model=get_hf_image_model(),
            timeout_seconds=get_timeout_seconds(),
            retry_attempts=get_retry_attempts(),
            retry_min_wait=get_retry_min_wait(),
            retry_max_wait=get_retry_max_wait(),
        )


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class Flashcard(BaseModel):
    """A single study card. Serialized with the camelCase names the UI expects."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    front: str
    back: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class QuizQuestion(BaseModel):
    """
    A multiple choice question.

    Construction enforces exactly four unique options and a correct answer
    that is one of them, character for character.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    question: str
    options: list[str]
    correct_answer: str = Field(alias="correctAnswer")
    explanation: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @model_validator(mode="after")
    def _check_answer_key(self) -> "QuizQuestion":
        if len(self.options) != QUIZ_OPTION_COUNT:
            raise ValueError(
                f"expected {QUIZ_OPTION_COUNT} options, got {len(self.options)}"
            )
        if len(set(self.options)) != len(self.options):
            raise ValueError("options must be unique")
        if self.correct_answer not in self.options:
            raise ValueError(
                f"correct answer {self.correct_answer!r} is not one of the options"
            )
        return self


class ChatMessage(BaseModel):
    """
    A single turn in a tutoring conversation.

    Assistant turns are filled in progressively while streaming; finish()
    freezes the content.
    """
    role: Literal["user", "assistant"]
    content: str = ""

    _finished: bool = PrivateAttr(default=False)

    @property
    def finished(self) -> bool:
        return self._finished

    def append(self, fragment: str) -> None:
        if self._finished:
            raise RuntimeError("Cannot append to a finished message")
        self.content += fragment

    def finish(self) -> None:
        self._finished = True


class Conversation(BaseModel):
    """Ordered chat history for the concept explainer."""
    messages: list[ChatMessage] = []

    def add_user_message(self, content: str) -> ChatMessage:
        message = ChatMessage(role="user", content=content)
        message.finish()
        self.messages.append(message)
        return message

    def start_assistant_message(self) -> ChatMessage:
        message = ChatMessage(role="assistant")
        self.messages.append(message)
        return message

    def discard(self, message: ChatMessage) -> None:
        """Drop a message by identity; equal-looking messages are kept."""
        self.messages[:] = [m for m in self.messages if m is not message]
