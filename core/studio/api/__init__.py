"""AI API adapters for Studio's generation and transcription nodes."""

from studio.api.adapter import (
    CreditEstimate,
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationResult,
    StudioApiAdapter,
    TextGenerationRequest,
    TextGenerationResult,
    TranscriptionRequest,
    TranscriptionResult,
)

__all__ = [
    "CreditEstimate",
    "GeneratedImage",
    "ImageGenerationRequest",
    "ImageGenerationResult",
    "StudioApiAdapter",
    "TextGenerationRequest",
    "TextGenerationResult",
    "TranscriptionRequest",
    "TranscriptionResult",
]
