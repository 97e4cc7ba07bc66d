"""LiteLLM-backed implementation of the Studio API adapter."""

import base64
import logging
import time
from typing import Any

import httpx
import litellm

from studio.api.adapter import (
    ASPECT_RATIO_SIZES,
    GeneratedImage,
    ImageGenerationRequest,
    ImageGenerationResult,
    StudioApiAdapter,
    TextGenerationRequest,
    TextGenerationResult,
    TranscriptionRequest,
    TranscriptionResult,
)
from studio.config import StudioConfig

logger = logging.getLogger(__name__)


class LiteLLMApiAdapter(StudioApiAdapter):
    """
    Routes Studio requests through LiteLLM so any provider it supports can
    back the generation nodes. Model ids use LiteLLM's ``provider/model`` form.
    """

    def __init__(self, config: StudioConfig | None = None, timeout: float = 300.0):
        self.config = config or StudioConfig.load()
        self.timeout = timeout

    def _auth_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self.config.api_key:
            kwargs["api_key"] = self.config.api_key
        if self.config.api_base:
            kwargs["api_base"] = self.config.api_base
        return kwargs

    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResult:
        model = request.model_id or self.config.text_model
        messages = []
        if request.system_prompt.strip():
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        kwargs = self._auth_kwargs()
        if request.reasoning_effort:
            kwargs["reasoning_effort"] = request.reasoning_effort

        started = time.monotonic()
        response = await litellm.acompletion(model=model, messages=messages, **kwargs)
        text = response.choices[0].message.content or ""
        logger.info(
            f"Generated {len(text)} characters",
            extra={
                "event": "text_generation",
                "model": model,
                "node_id": request.node_id or None,
                "latency_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return TextGenerationResult(text=text, model_id=getattr(response, "model", None) or model)

    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResult:
        model = request.model_id or self.config.image_model
        response = await litellm.aimage_generation(
            prompt=request.prompt,
            model=model,
            n=request.count,
            size=ASPECT_RATIO_SIZES.get(request.aspect_ratio, "1024x1024"),
            **self._auth_kwargs(),
        )

        images: list[GeneratedImage] = []
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for item in response.data or []:
                b64 = getattr(item, "b64_json", None)
                url = getattr(item, "url", None)
                if b64:
                    images.append(GeneratedImage(data=base64.b64decode(b64)))
                elif url:
                    download = await client.get(url)
                    download.raise_for_status()
                    mime = download.headers.get("content-type", "image/png").split(";")[0]
                    images.append(GeneratedImage(data=download.content, mime_type=mime))

        if not images:
            raise RuntimeError(f"Image generation with {model} returned no images")
        return ImageGenerationResult(images=images, model_id=model)

    async def transcribe_audio(self, request: TranscriptionRequest) -> TranscriptionResult:
        model = request.model_id or self.config.transcription_model
        response = await litellm.atranscription(
            model=model,
            file=(request.filename, request.audio, request.mime_type),
            **self._auth_kwargs(),
        )
        return TranscriptionResult(text=getattr(response, "text", "") or "")
