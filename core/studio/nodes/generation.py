"""
AI generation nodes: text, images and transcription.

All three call the run's ``StudioApiAdapter`` and are cached by inputs, so an
unchanged prompt is never sent twice.
"""

import logging
import os
from typing import Any

from pydantic import ValidationError

from studio.api.adapter import (
    ASPECT_RATIO_SIZES,
    ImageGenerationRequest,
    TextGenerationRequest,
    TranscriptionRequest,
)
from studio.errors import NodeExecutionError
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.types import CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import get_text, infer_mime_type, is_absolute_path, read_int
from studio.schemas.asset import AssetRef

logger = logging.getLogger(__name__)

# Longest prompt the image backends accept.
MAX_IMAGE_PROMPT_CHARS = 7_900
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
IMAGE_PROMPT_SYSTEM_PROMPT = (
    "Write one image generation prompt for the request below. Reply with the prompt only, "
    f"at most {MAX_IMAGE_PROMPT_CHARS} characters."
)
REASONING_EFFORTS = ("default", "low", "medium", "high")

_DISPLAY_FIELDS = (
    ConfigField("value", "Output", ConfigFieldType.TEXTAREA),
    ConfigField("textDisplayMode", "Display", ConfigFieldType.SELECT, options=("rendered", "raw")),
)


def _structured_prompt(value: Any) -> tuple[str, str] | None:
    """(system prompt, user message) from a prompt-template payload, if it is one."""
    if not isinstance(value, dict):
        return None
    system_prompt = get_text(value.get("systemPrompt")).strip()
    user_message = get_text(value.get("userMessage")).strip()
    if not system_prompt or not user_message:
        return None
    return system_prompt, user_message


# ---------------------------------------------------------------------------
# Text generation
# ---------------------------------------------------------------------------


async def _execute_text_generation(context: ExecutionContext) -> NodeResult:
    prompt_input = context.inputs.get("prompt")
    structured = _structured_prompt(prompt_input)
    if structured is None:
        system_prompt = get_text(context.config.get("systemPrompt")).strip()
        user_message = "" if isinstance(prompt_input, dict) else get_text(prompt_input).strip()
        if not system_prompt or not user_message:
            raise NodeExecutionError(
                context.node.id,
                "requires prompt input with both systemPrompt and userMessage "
                "(or a text prompt and a configured system prompt).",
            )
        structured = (system_prompt, user_message)

    effort = get_text(context.config.get("reasoningEffort")).strip().lower()
    result = await context.services.api.generate_text(
        TextGenerationRequest(
            prompt=structured[1],
            system_prompt=structured[0],
            model_id=get_text(context.config.get("modelId")).strip(),
            reasoning_effort=effort if effort and effort != "default" else None,
            run_id=context.run_id,
            node_id=context.node.id,
            project_path=context.project_path,
        )
    )
    return NodeResult(outputs={"text": result.text})


TEXT_GENERATION_NODE = NodeDefinition(
    kind="studio.text_generation",
    version="1.0.0",
    capability_class=CapabilityClass.API,
    execute=_execute_text_generation,
    input_ports=(PortDefinition("prompt", PortType.TEXT, required=True),),
    output_ports=(PortDefinition("text", PortType.TEXT),),
    config_defaults={
        "modelId": "",
        "systemPrompt": DEFAULT_SYSTEM_PROMPT,
        "reasoningEffort": "default",
        "value": "",
        "textDisplayMode": "rendered",
    },
    config_schema=ConfigSchema(
        fields=(
            ConfigField("modelId", "Model", ConfigFieldType.TEXT, placeholder="openai/gpt-5-mini"),
            ConfigField(
                "systemPrompt",
                "System Prompt",
                ConfigFieldType.TEXTAREA,
                description="Used when the prompt input is plain text.",
            ),
            ConfigField(
                "reasoningEffort",
                "Reasoning Effort",
                ConfigFieldType.SELECT,
                options=REASONING_EFFORTS,
            ),
            *_DISPLAY_FIELDS,
        ),
    ),
    label="Text Generation",
)


# ---------------------------------------------------------------------------
# Image generation
# ---------------------------------------------------------------------------


async def _materialize_image_prompt(context: ExecutionContext, prompt_input: Any) -> str:
    structured = _structured_prompt(prompt_input)
    if structured is None:
        prompt = get_text(prompt_input).strip()
    else:
        system_prompt, user_message = structured
        result = await context.services.api.generate_text(
            TextGenerationRequest(
                prompt=user_message,
                system_prompt=f"{system_prompt}\n\n{IMAGE_PROMPT_SYSTEM_PROMPT}",
                model_id=get_text(context.config.get("promptModelId")).strip(),
                run_id=context.run_id,
                node_id=context.node.id,
                project_path=context.project_path,
            )
        )
        prompt = result.text.strip()

    if len(prompt) > MAX_IMAGE_PROMPT_CHARS:
        context.log(f"Truncating image prompt from {len(prompt)} characters")
        prompt = prompt[:MAX_IMAGE_PROMPT_CHARS].rstrip()
    return prompt


async def _read_input_images(context: ExecutionContext) -> list[bytes]:
    raw = context.inputs.get("images")
    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    images = []
    for item in items:
        try:
            ref = AssetRef.model_validate(item)
        except ValidationError as e:
            raise NodeExecutionError(
                context.node.id, f"images input is not an asset list: {e}"
            ) from e
        images.append(await context.services.read_asset(ref))
    return images


async def _execute_image_generation(context: ExecutionContext) -> NodeResult:
    prompt = await _materialize_image_prompt(context, context.inputs.get("prompt"))
    if not prompt:
        raise NodeExecutionError(context.node.id, "requires a non-empty prompt.")

    result = await context.services.api.generate_image(
        ImageGenerationRequest(
            prompt=prompt,
            model_id=get_text(context.config.get("modelId")).strip(),
            count=read_int(context.config.get("count"), 1, minimum=1, maximum=4),
            aspect_ratio=get_text(context.config.get("aspectRatio")) or "1:1",
            input_images=await _read_input_images(context),
            run_id=context.run_id,
            project_path=context.project_path,
        )
    )

    refs = [
        await context.services.store_asset(image.data, image.mime_type) for image in result.images
    ]
    return NodeResult(outputs={"images": [ref.to_document() for ref in refs]}, artifacts=refs)


IMAGE_GENERATION_NODE = NodeDefinition(
    kind="studio.image_generation",
    version="1.0.0",
    capability_class=CapabilityClass.API,
    execute=_execute_image_generation,
    input_ports=(
        PortDefinition("prompt", PortType.TEXT, required=True),
        PortDefinition("images", PortType.JSON, description="Reference images (asset refs)"),
    ),
    output_ports=(PortDefinition("images", PortType.JSON),),
    config_defaults={"modelId": "", "promptModelId": "", "count": 1, "aspectRatio": "1:1"},
    config_schema=ConfigSchema(
        fields=(
            ConfigField("modelId", "Model", ConfigFieldType.TEXT, placeholder="openai/gpt-image-1"),
            ConfigField("promptModelId", "Prompt Model", ConfigFieldType.TEXT),
            ConfigField(
                "count", "Images", ConfigFieldType.NUMBER, required=True, min=1, max=4, integer=True
            ),
            ConfigField(
                "aspectRatio",
                "Aspect Ratio",
                ConfigFieldType.SELECT,
                required=True,
                options=tuple(ASPECT_RATIO_SIZES),
            ),
        ),
    ),
    label="Image Generation",
)


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------


async def _execute_transcription(context: ExecutionContext) -> NodeResult:
    path = get_text(context.inputs.get("path")).strip()
    if not path:
        raise NodeExecutionError(context.node.id, "requires a path input.")

    mime_type = infer_mime_type(path)
    if not mime_type.startswith(("audio/", "video/")):
        raise NodeExecutionError(
            context.node.id,
            f'transcription requires audio/* or video/* input. Received "{mime_type}".',
        )

    if is_absolute_path(path):
        audio = await context.services.read_local_file_binary(path)
    else:
        audio = await context.services.read_vault_binary(path)

    result = await context.services.api.transcribe_audio(
        TranscriptionRequest(
            audio=audio,
            mime_type=mime_type,
            filename=os.path.basename(path) or "audio",
            model_id=get_text(context.config.get("modelId")).strip(),
            run_id=context.run_id,
            project_path=context.project_path,
        )
    )
    return NodeResult(outputs={"text": result.text})


TRANSCRIPTION_NODE = NodeDefinition(
    kind="studio.transcription",
    version="1.0.0",
    capability_class=CapabilityClass.API,
    execute=_execute_transcription,
    input_ports=(PortDefinition("path", PortType.TEXT, required=True),),
    output_ports=(PortDefinition("text", PortType.TEXT),),
    config_defaults={"modelId": "", "value": "", "textDisplayMode": "rendered"},
    config_schema=ConfigSchema(
        fields=(ConfigField("modelId", "Model", ConfigFieldType.TEXT), *_DISPLAY_FIELDS),
    ),
    label="Transcription",
)
