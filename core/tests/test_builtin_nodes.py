"""Tests for the built-in node kinds, run through the executor."""

import sys

import pytest
from conftest import PNG_BYTES, edge, make_policy, make_project, node

from studio.errors import CapabilityDeniedError, NodeExecutionError, ProcessExitError
from studio.graph.executor import GraphExecutor
from studio.nodes import BUILTIN_NODES
from studio.nodes.media import replace_path_extension


async def _execute(registry, services, nodes, edges=None):
    return await GraphExecutor(registry).execute(
        make_project(nodes, edges), services, project_path="Test.systemsculpt"
    )


class TestRegistry:
    def test_builtin_kinds(self, registry):
        kinds = {definition.kind for definition in BUILTIN_NODES}

        assert len(registry) == len(BUILTIN_NODES)
        assert {
            "studio.input",
            "studio.prompt_template",
            "studio.text_generation",
            "studio.image_generation",
            "studio.transcription",
            "studio.media_ingest",
            "studio.audio_extract",
            "studio.http_request",
            "studio.cli_command",
            "studio.dataset",
        } == kinds


class TestTextNodes:
    @pytest.mark.asyncio
    async def test_prompt_template_requires_text(self, registry, make_services):
        nodes = [
            node("in", "studio.input", value="   "),
            node("tpl", "studio.prompt_template", template="System"),
        ]

        with pytest.raises(NodeExecutionError, match="requires both"):
            await _execute(registry, make_services(), nodes, [edge("in", "text", "tpl", "text")])

    @pytest.mark.asyncio
    async def test_text_generation_with_structured_prompt(
        self, registry, make_services, fake_api
    ):
        nodes = [
            node("in", "studio.input", value="Summarize this"),
            node("tpl", "studio.prompt_template", template="You are terse. Input: {{text}}"),
            node("gen", "studio.text_generation", modelId="openai/gpt-5-mini"),
        ]
        edges = [edge("in", "text", "tpl", "text"), edge("tpl", "prompt", "gen", "prompt")]

        result = await _execute(registry, make_services(), nodes, edges)

        request = fake_api.text_requests[0]
        assert request.system_prompt == "You are terse. Input: Summarize this"
        assert request.prompt == "Summarize this"
        assert request.model_id == "openai/gpt-5-mini"
        assert request.node_id == "gen"
        assert result.outputs["gen"]["text"] == "echo: Summarize this"

    @pytest.mark.asyncio
    async def test_text_generation_plain_text_needs_system_prompt(
        self, registry, make_services
    ):
        nodes = [
            node("in", "studio.input", value="hi"),
            node("gen", "studio.text_generation", systemPrompt=""),
        ]

        with pytest.raises(NodeExecutionError, match="systemPrompt"):
            await _execute(registry, make_services(), nodes, [edge("in", "text", "gen", "prompt")])

    @pytest.mark.asyncio
    async def test_reasoning_effort_default_is_omitted(self, registry, make_services, fake_api):
        nodes = [
            node("in", "studio.input", value="hi"),
            node("gen", "studio.text_generation", systemPrompt="s", reasoningEffort="default"),
        ]

        await _execute(registry, make_services(), nodes, [edge("in", "text", "gen", "prompt")])

        assert fake_api.text_requests[0].reasoning_effort is None


class TestImageGeneration:
    @pytest.mark.asyncio
    async def test_images_are_stored_as_assets(self, registry, make_services, fake_api, vault_root):
        nodes = [
            node("in", "studio.input", value="a red fox"),
            node("img", "studio.image_generation", count=2, aspectRatio="16:9"),
        ]

        result = await _execute(
            registry, make_services(), nodes, [edge("in", "text", "img", "prompt")]
        )

        assert fake_api.image_requests[0].prompt == "a red fox"
        assert fake_api.image_requests[0].aspect_ratio == "16:9"
        refs = result.artifacts["img"]
        assert len(refs) == 2
        assert result.outputs["img"]["images"][0]["mimeType"] == "image/png"
        assert (vault_root / refs[1].path).read_bytes() == PNG_BYTES + bytes([1])

    @pytest.mark.asyncio
    async def test_structured_prompt_is_rewritten_first(self, registry, make_services, fake_api):
        nodes = [
            node("in", "studio.input", value="a fox"),
            node("tpl", "studio.prompt_template", template="Make it moody."),
            node("img", "studio.image_generation"),
        ]
        edges = [edge("in", "text", "tpl", "text"), edge("tpl", "prompt", "img", "prompt")]

        await _execute(registry, make_services(), nodes, edges)

        assert fake_api.text_requests[0].system_prompt.startswith("Make it moody.")
        assert fake_api.image_requests[0].prompt == "echo: a fox"

    @pytest.mark.asyncio
    async def test_long_prompt_is_truncated(self, registry, make_services, fake_api):
        nodes = [
            node("in", "studio.input", value="x" * 9000),
            node("img", "studio.image_generation"),
        ]

        await _execute(registry, make_services(), nodes, [edge("in", "text", "img", "prompt")])

        assert len(fake_api.image_requests[0].prompt) == 7900


class TestMediaNodes:
    @pytest.mark.asyncio
    async def test_media_ingest_vault_path(self, registry, make_services):
        result = await _execute(
            registry,
            make_services(),
            [node("media", "studio.media_ingest", sourcePath="Media/./clip.mp4")],
        )

        assert result.outputs["media"] == {
            "path": "Media/clip.mp4",
            "preview_path": "",
            "preview_error": "",
        }

    @pytest.mark.asyncio
    async def test_media_ingest_absolute_path_gets_preview(
        self, registry, make_services, tmp_path, vault_root
    ):
        image = tmp_path / "photo.png"
        image.write_bytes(PNG_BYTES)

        result = await _execute(
            registry, make_services(), [node("media", "studio.media_ingest", sourcePath=str(image))]
        )

        outputs = result.outputs["media"]
        assert outputs["path"] == str(image)
        assert (vault_root / outputs["preview_path"]).read_bytes() == PNG_BYTES
        assert result.artifacts["media"][0].mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_media_ingest_too_large_reports_preview_error(
        self, registry, make_services, tmp_path
    ):
        video = tmp_path / "big.mp4"
        video.write_bytes(b"0" * 4096)

        result = await _execute(
            registry,
            make_services(max_local_read_bytes=1024),
            [node("media", "studio.media_ingest", sourcePath=str(video))],
        )

        outputs = result.outputs["media"]
        assert outputs["preview_path"] == ""
        assert "exceeds the local read limit" in outputs["preview_error"]

    @pytest.mark.asyncio
    async def test_media_ingest_ungranted_path(self, registry, make_services, tmp_path):
        with pytest.raises(NodeExecutionError, match="Access denied") as exc_info:
            await _execute(
                registry,
                make_services(policy=make_policy()),
                [node("media", "studio.media_ingest", sourcePath=str(tmp_path / "x.png"))],
            )

        assert exc_info.value.node_id == "media"
        assert isinstance(exc_info.value.__cause__, CapabilityDeniedError)

    @pytest.mark.asyncio
    async def test_transcription_reads_vault_audio(
        self, registry, make_services, fake_api, vault_root
    ):
        (vault_root / "Audio").mkdir()
        (vault_root / "Audio" / "memo.mp3").write_bytes(b"ID3audio")
        nodes = [
            node("media", "studio.media_ingest", sourcePath="Audio/memo.mp3"),
            node("tx", "studio.transcription"),
        ]

        result = await _execute(
            registry, make_services(), nodes, [edge("media", "path", "tx", "path")]
        )

        request = fake_api.transcription_requests[0]
        assert request.audio == b"ID3audio"
        assert request.mime_type == "audio/mpeg"
        assert result.outputs["tx"]["text"] == "transcript of memo.mp3"

    @pytest.mark.asyncio
    async def test_transcription_rejects_non_audio(self, registry, make_services):
        nodes = [
            node("media", "studio.media_ingest", sourcePath="Notes/readme.md"),
            node("tx", "studio.transcription"),
        ]

        with pytest.raises(NodeExecutionError, match="audio/\\* or video/\\*"):
            await _execute(registry, make_services(), nodes, [edge("media", "path", "tx", "path")])

    @pytest.mark.asyncio
    async def test_audio_extract_missing_ffmpeg(self, registry, make_services, tmp_path):
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"video")
        nodes = [
            node("media", "studio.media_ingest", sourcePath=str(clip)),
            node("audio", "studio.audio_extract", ffmpegCommand="studio-missing-ffmpeg"),
        ]
        policy = make_policy(paths=[str(tmp_path)], commands=["*"])

        with pytest.raises(NodeExecutionError, match="was not found"):
            await _execute(
                registry,
                make_services(policy=policy),
                nodes,
                [edge("media", "path", "audio", "path")],
            )

    @pytest.mark.parametrize(
        ("path", "extension", "expected"),
        [
            ("/a/b/clip.mp4", "m4a", "/a/b/clip.m4a"),
            ("/a/b/clip", "wav", "/a/b/clip.wav"),
            ("/a/b/", "mp3", "/a/b/audio.mp3"),
            ("/a/.hidden", ".OGG", "/a/.hidden.ogg"),
        ],
    )
    def test_replace_path_extension(self, path, extension, expected):
        assert replace_path_extension(path, extension) == expected


class TestCliCommand:
    def _cli_node(self, tmp_path, script, **config):
        return node(
            "cli",
            "studio.cli_command",
            command=sys.executable,
            args=["-c", script],
            cwd=str(tmp_path),
            **config,
        )

    def _services(self, make_services, tmp_path):
        return make_services(policy=make_policy(paths=[str(tmp_path)], commands=[sys.executable]))

    @pytest.mark.asyncio
    async def test_runs_command_with_templated_args(self, registry, make_services, tmp_path):
        nodes = [
            node("in", "studio.input", value="world"),
            node(
                "cli",
                "studio.cli_command",
                command=sys.executable,
                args=["-c", "import sys; print('hello ' + sys.argv[1])", "{{input}}"],
                cwd=str(tmp_path),
            ),
        ]

        result = await _execute(
            registry,
            self._services(make_services, tmp_path),
            nodes,
            [edge("in", "text", "cli", "input")],
        )

        assert result.outputs["cli"]["stdout"].strip() == "hello world"
        assert result.outputs["cli"]["exit_code"] == 0

    @pytest.mark.asyncio
    async def test_input_is_exposed_in_env(self, registry, make_services, tmp_path):
        nodes = [
            node("in", "studio.input", value="from env"),
            self._cli_node(tmp_path, "import os; print(os.environ['STUDIO_CLI_INPUT'])"),
        ]

        result = await _execute(
            registry,
            self._services(make_services, tmp_path),
            nodes,
            [edge("in", "text", "cli", "input")],
        )

        assert result.outputs["cli"]["stdout"].strip() == "from env"

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails_node(self, registry, make_services, tmp_path):
        script = "import sys; print('bad input', file=sys.stderr); sys.exit(4)"

        with pytest.raises(ProcessExitError, match="bad input") as exc_info:
            await _execute(
                registry,
                self._services(make_services, tmp_path),
                [self._cli_node(tmp_path, script)],
            )

        assert exc_info.value.exit_code == 4
        assert exc_info.value.node_id == "cli"

    @pytest.mark.asyncio
    async def test_ungranted_command_denied(self, registry, make_services, tmp_path):
        with pytest.raises(NodeExecutionError, match="Access denied") as exc_info:
            await _execute(
                registry,
                make_services(policy=make_policy(paths=[str(tmp_path)], commands=["ffmpeg"])),
                [self._cli_node(tmp_path, "print(1)")],
            )

        assert isinstance(exc_info.value.__cause__, CapabilityDeniedError)
