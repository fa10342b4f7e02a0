"""Shared test fixtures for edugenie tests."""

import json

import pytest


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

MOCK_OLLAMA_URL = "http://ollama.test:11434"
MOCK_GENERATE_URL = f"{MOCK_OLLAMA_URL}/api/generate"
MOCK_MODEL = "llama3.2"
MOCK_VISION_MODEL = "llava"

MOCK_HF_URL = "https://hf.test/hf-inference"
MOCK_HF_TEXT_MODEL = "mistralai/Mistral-7B-Instruct-v0.2"
MOCK_HF_IMAGE_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
MOCK_HF_IMAGE_URL = f"{MOCK_HF_URL}/models/{MOCK_HF_IMAGE_MODEL}"

PHOTOSYNTHESIS_CARDS = [
    {"front": "What is photosynthesis?", "back": "Turning light into chemical energy."},
    {"front": "Where does it happen?", "back": "In the chloroplasts."},
    {"front": "What pigment absorbs light?", "back": "Chlorophyll."},
    {"front": "What gas is taken in?", "back": "Carbon dioxide."},
    {"front": "What gas is released?", "back": "Oxygen."},
]

MOCK_QUIZ = [
    {
        "question": "What is the powerhouse of the cell?",
        "options": ["Nucleus", "Mitochondria", "Ribosome", "Golgi body"],
        "correctAnswer": "Mitochondria",
        "explanation": "Mitochondria produce ATP.",
    },
    {
        "question": "What is H2O?",
        "options": ["Salt", "Water", "Sugar", "Oxygen"],
        "correctAnswer": "Water",
        "explanation": "Two hydrogens and one oxygen.",
    },
]

MOCK_STREAMING_LINES = [
    {"model": MOCK_MODEL, "response": "Plants ", "done": False},
    {"model": MOCK_MODEL, "response": "make ", "done": False},
    {"model": MOCK_MODEL, "response": "sugar.", "done": False},
    {"model": MOCK_MODEL, "response": "", "done": True},
]

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


def generate_response(text: str) -> dict:
    """Non-streaming /api/generate body."""
    return {"model": MOCK_MODEL, "response": text, "done": True}


def ndjson(lines: list) -> bytes:
    return "".join(json.dumps(line) + "\n" for line in lines).encode()


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def photosynthesis_json():
    return json.dumps(PHOTOSYNTHESIS_CARDS)


@pytest.fixture
def quiz_json():
    return json.dumps(MOCK_QUIZ)


@pytest.fixture
def ollama_adapter():
    """OllamaAdapter with instant retries."""
    from edugenie.adapters.ollama import OllamaAdapter
    return OllamaAdapter(
        base_url=MOCK_OLLAMA_URL,
        model=MOCK_MODEL,
        vision_model=MOCK_VISION_MODEL,
        timeout_seconds=5,
        retry_attempts=3,
        retry_min_wait=0,
        retry_max_wait=0,
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable edugenie reads so defaults apply."""
    for key in (
        "OLLAMA_BASE_URL", "OLLAMA_MODEL", "OLLAMA_VISION_MODEL",
        "HUGGINGFACE_API_KEY", "HF_TOKEN", "HF_BASE_URL",
        "HF_TEXT_MODEL", "HF_IMAGE_MODEL", "EDUGENIE_TIMEOUT_SECONDS",
        "EDUGENIE_RETRY_ATTEMPTS", "EDUGENIE_RETRY_MIN_WAIT", "EDUGENIE_RETRY_MAX_WAIT",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch
