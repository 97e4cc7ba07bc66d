"""AI API abstraction used by the generation and transcription nodes."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from studio.schemas.project import StudioProject

# Aspect ratios offered by the image node, with the pixel size requested for each.
ASPECT_RATIO_SIZES = {
    "1:1": "1024x1024",
    "3:2": "1536x1024",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
    "2:3": "1024x1536",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
}


@dataclass
class TextGenerationRequest:
    prompt: str
    model_id: str
    system_prompt: str = ""
    reasoning_effort: str | None = None
    run_id: str = ""
    node_id: str = ""
    project_path: str = ""


@dataclass
class TextGenerationResult:
    text: str
    model_id: str


@dataclass
class ImageGenerationRequest:
    prompt: str
    model_id: str
    count: int = 1
    aspect_ratio: str = "1:1"
    input_images: list[bytes] = field(default_factory=list)
    run_id: str = ""
    project_path: str = ""


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"


@dataclass
class ImageGenerationResult:
    images: list[GeneratedImage]
    model_id: str


@dataclass
class TranscriptionRequest:
    audio: bytes
    mime_type: str
    filename: str = "audio"
    model_id: str = ""
    run_id: str = ""
    project_path: str = ""


@dataclass
class TranscriptionResult:
    text: str


@dataclass
class CreditEstimate:
    """Outcome of the pre-run credit check."""

    ok: bool
    estimated_credits: int = 0
    available_credits: int | None = None
    reason: str = ""


class StudioApiAdapter(ABC):
    """
    Abstract AI backend for Studio nodes.

    Implementations handle authentication, transport and retries. Nodes only
    see these four calls.
    """

    async def estimate_run_credits(self, project: "StudioProject") -> CreditEstimate:
        """Check whether a run of ``project`` can be afforded. Defaults to allowed."""
        return CreditEstimate(ok=True)

    @abstractmethod
    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResult:
        """Generate text for a single prompt."""
        ...

    @abstractmethod
    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResult:
        """Generate ``request.count`` images."""
        ...

    @abstractmethod
    async def transcribe_audio(self, request: TranscriptionRequest) -> TranscriptionResult:
        """Transcribe an audio file."""
        ...
