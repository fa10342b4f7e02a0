from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    """
    Standardized request object for one call to a generate endpoint.
    Built fresh per call by an adapter and rendered to the wire body with
    to_payload().
    """
    model_id: str
    prompt: str
    system: Optional[str] = None
    # None = free text; "json" or a JSON schema dict = structured output
    output_format: Optional[Union[str, Dict[str, Any]]] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    images: List[str] = Field(default_factory=list)
    stream: bool = False

    def options(self) -> Dict[str, Any]:
        sampling = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
        }
        return {k: v for k, v in sampling.items() if v is not None}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model_id,
            "prompt": self.prompt,
            "stream": self.stream,
        }
        options = self.options()
        if options:
            payload["options"] = options
        if self.system:
            payload["system"] = self.system
        if self.output_format is not None:
            payload["format"] = self.output_format
        if self.images:
            payload["images"] = list(self.images)
        return payload


FLASHCARD_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "front": {"type": "string"},
            "back": {"type": "string"},
        },
        "required": ["front", "back"],
        "additionalProperties": False,
    },
}

QUIZ_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "question": {"type": "string"},
            "options": {
                "type": "array",
                "items": {"type": "string"},
                "minItems": 4,
                "maxItems": 4,
            },
            "correctAnswer": {"type": "string"},
            "explanation": {"type": "string"},
        },
        "required": ["question", "options", "correctAnswer", "explanation"],
        "additionalProperties": False,
    },
}


class Document(BaseModel):
    """A unit of study material handed to the document store."""
    id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProcessedFile(BaseModel):
    """Text extracted from an uploaded file by the file processor."""
    content: str
    type: str
    name: str
