"""Media nodes: ingesting source files and extracting audio with ffmpeg."""

import logging
import os
import re

from studio.errors import (
    CommandNotFoundError,
    LocalFileTooLargeError,
    NodeExecutionError,
    NodeTimeoutError,
    ProcessExitError,
)
from studio.graph.config_schema import ConfigField, ConfigFieldType, ConfigSchema
from studio.graph.node import ExecutionContext, NodeDefinition, NodeResult
from studio.graph.types import CapabilityClass, PortDefinition, PortType
from studio.nodes.shared import get_text, infer_mime_type, is_absolute_path, read_int
from studio.sandbox.cli_runner import CliRequest

logger = logging.getLogger(__name__)

_PREVIEWABLE_PREFIXES = ("image/", "video/", "audio/")


# ---------------------------------------------------------------------------
# Media ingest
# ---------------------------------------------------------------------------


async def _execute_media_ingest(context: ExecutionContext) -> NodeResult:
    """
    Emit the configured media path, staging a preview asset for local files.

    Vault paths pass through unchanged. Absolute paths to images, audio and
    video are copied into the asset store so they can be previewed; a file
    too large to read only produces a ``preview_error``.
    """
    source_path = get_text(context.config.get("sourcePath")).strip()
    if not source_path:
        raise NodeExecutionError(context.node.id, "requires a source path.")

    if not is_absolute_path(source_path):
        path = context.services.assert_filesystem_path(source_path)
        return NodeResult(outputs={"path": path, "preview_path": "", "preview_error": ""})

    context.services.assert_filesystem_path(source_path)
    mime_type = infer_mime_type(source_path)
    if not mime_type.startswith(_PREVIEWABLE_PREFIXES):
        return NodeResult(outputs={"path": source_path, "preview_path": "", "preview_error": ""})

    try:
        data = await context.services.read_local_file_binary(source_path)
    except (LocalFileTooLargeError, MemoryError) as e:
        logger.warning(f"Skipping preview for {source_path}: {e}")
        return NodeResult(
            outputs={"path": source_path, "preview_path": "", "preview_error": str(e)}
        )

    ref = await context.services.store_asset(data, mime_type)
    return NodeResult(
        outputs={"path": source_path, "preview_path": ref.path, "preview_error": ""},
        artifacts=[ref],
    )


MEDIA_INGEST_NODE = NodeDefinition(
    kind="studio.media_ingest",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_IO,
    execute=_execute_media_ingest,
    output_ports=(
        PortDefinition("path", PortType.TEXT),
        PortDefinition("preview_path", PortType.TEXT),
        PortDefinition("preview_error", PortType.TEXT),
    ),
    config_defaults={"sourcePath": ""},
    config_schema=ConfigSchema(
        fields=(ConfigField("sourcePath", "Source", ConfigFieldType.MEDIA_PATH, required=True),),
        allow_unknown_keys=True,
    ),
    label="Media",
)


# ---------------------------------------------------------------------------
# Audio extract
# ---------------------------------------------------------------------------

AUDIO_OUTPUT_FORMATS = ("m4a", "mp3", "wav", "ogg")

_CODEC_ARGS = {
    "wav": ["-acodec", "pcm_s16le", "-ac", "1", "-ar", "16000"],
    "mp3": ["-acodec", "libmp3lame", "-ac", "1", "-ar", "16000", "-b:a", "64k"],
    "m4a": ["-acodec", "aac", "-ac", "1", "-ar", "16000", "-b:a", "64k"],
    "ogg": ["-acodec", "libvorbis", "-ac", "1", "-ar", "16000", "-b:a", "64k"],
}


def replace_path_extension(path: str, extension: str) -> str:
    """``/a/b/clip.mp4`` -> ``/a/b/clip.m4a``; a trailing separator names ``audio``."""
    trimmed = str(path or "").strip()
    extension = str(extension or "").strip().lower().lstrip(".")
    if not trimmed or not extension:
        return trimmed

    candidate = f"{trimmed}audio" if re.search(r"[\\/]+$", trimmed) else trimmed
    separator = max(candidate.rfind("/"), candidate.rfind("\\"))
    directory, file_name = candidate[: separator + 1], candidate[separator + 1 :]
    dot = file_name.rfind(".")
    base_name = file_name[:dot] if dot > 0 else (file_name or "audio")
    return f"{directory}{base_name}.{extension}"


async def _execute_audio_extract(context: ExecutionContext) -> NodeResult:
    node_id = context.node.id
    source_input = get_text(context.inputs.get("path")).strip()
    if not source_input:
        raise NodeExecutionError(node_id, "requires a path input.")

    source_path = context.services.resolve_absolute_path(source_input)
    output_format = get_text(context.config.get("outputFormat")).strip().lower()
    if output_format not in AUDIO_OUTPUT_FORMATS:
        output_format = "m4a"

    configured_output = get_text(context.config.get("outputPath")).strip()
    if configured_output:
        preferred = replace_path_extension(
            context.services.resolve_absolute_path(configured_output), output_format
        )
    else:
        preferred = replace_path_extension(source_path, output_format)
    output_path = context.services.resolve_absolute_path(preferred)

    source_mime = infer_mime_type(source_path)
    if not source_mime.startswith(("audio/", "video/")):
        raise NodeExecutionError(
            node_id,
            f'Audio extraction requires audio/* or video/* input. Received "{source_mime}".',
        )

    ffmpeg = get_text(context.config.get("ffmpegCommand")).strip() or "ffmpeg"
    if ffmpeg.lower() == "ffmpeg":
        ffmpeg = "ffmpeg"

    try:
        result = await context.services.run_cli(
            CliRequest(
                command=ffmpeg,
                args=["-y", "-i", source_path, "-vn", *_CODEC_ARGS[output_format], output_path],
                cwd=os.path.dirname(source_path),
                timeout_ms=read_int(context.config.get("timeoutMs"), 120_000, minimum=100),
                max_output_bytes=read_int(
                    context.config.get("maxOutputBytes"), 512 * 1024, minimum=1024
                ),
            )
        )
    except CommandNotFoundError as e:
        raise NodeExecutionError(
            node_id,
            f'FFmpeg command "{ffmpeg}" was not found. Install ffmpeg and/or set the FFmpeg '
            'Command to an installed binary (for example "ffmpeg" or "/opt/homebrew/bin/ffmpeg").',
        ) from e

    if result.timed_out:
        raise NodeTimeoutError(node_id, "Audio extraction timed out while running ffmpeg.")
    if result.exit_code != 0:
        output = (result.stderr or result.stdout or "No process output.").strip()
        raise ProcessExitError(node_id, result.exit_code, output[-2000:])

    return NodeResult(outputs={"path": output_path})


AUDIO_EXTRACT_NODE = NodeDefinition(
    kind="studio.audio_extract",
    version="1.0.0",
    capability_class=CapabilityClass.LOCAL_IO,
    execute=_execute_audio_extract,
    input_ports=(PortDefinition("path", PortType.TEXT, required=True),),
    output_ports=(PortDefinition("path", PortType.TEXT),),
    config_defaults={
        "ffmpegCommand": "ffmpeg",
        "outputFormat": "m4a",
        "outputPath": "",
        "timeoutMs": 120_000,
        "maxOutputBytes": 512 * 1024,
    },
    config_schema=ConfigSchema(
        fields=(
            ConfigField("ffmpegCommand", "FFmpeg Command", ConfigFieldType.TEXT, required=True),
            ConfigField(
                "outputFormat",
                "Output Format",
                ConfigFieldType.SELECT,
                required=True,
                options=AUDIO_OUTPUT_FORMATS,
            ),
            ConfigField(
                "outputPath",
                "Output Path",
                ConfigFieldType.TEXT,
                placeholder="Optional. Defaults to source path + selected output extension.",
            ),
            ConfigField(
                "timeoutMs",
                "Timeout (ms)",
                ConfigFieldType.NUMBER,
                required=True,
                min=100,
                integer=True,
            ),
            ConfigField(
                "maxOutputBytes",
                "Max Process Output Bytes",
                ConfigFieldType.NUMBER,
                required=True,
                min=1024,
                integer=True,
            ),
        ),
        allow_unknown_keys=True,
    ),
    label="Audio Extract",
)
