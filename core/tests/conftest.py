"""Shared fixtures: a temp vault, a fake AI backend and project builders."""

from pathlib import Path
from typing import Any

import pytest

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
from studio.graph.registry import NodeRegistry
from studio.nodes import register_builtin_nodes
from studio.runtime.services import RunServices
from studio.sandbox.permissions import PermissionManager
from studio.schemas.policy import Capability, CapabilityGrant, GrantScope, PermissionPolicy
from studio.schemas.project import (
    PermissionsRef,
    StudioEdge,
    StudioGraph,
    StudioNode,
    StudioProject,
)
from studio.secrets import EnvSecretStore
from studio.storage.asset_store import AssetStore
from studio.storage.vault import LocalVault

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class FakeApi(StudioApiAdapter):
    """Deterministic AI backend that records every request."""

    def __init__(self, credits_ok: bool = True):
        self.credits_ok = credits_ok
        self.text_requests: list[TextGenerationRequest] = []
        self.image_requests: list[ImageGenerationRequest] = []
        self.transcription_requests: list[TranscriptionRequest] = []

    async def estimate_run_credits(self, project) -> CreditEstimate:
        if self.credits_ok:
            return CreditEstimate(ok=True, estimated_credits=1, available_credits=100)
        return CreditEstimate(ok=False, reason="balance is 0")

    async def generate_text(self, request: TextGenerationRequest) -> TextGenerationResult:
        self.text_requests.append(request)
        return TextGenerationResult(text=f"echo: {request.prompt}", model_id=request.model_id)

    async def generate_image(self, request: ImageGenerationRequest) -> ImageGenerationResult:
        self.image_requests.append(request)
        images = [GeneratedImage(data=PNG_BYTES + bytes([i])) for i in range(request.count)]
        return ImageGenerationResult(images=images, model_id=request.model_id)

    async def transcribe_audio(self, request: TranscriptionRequest) -> TranscriptionResult:
        self.transcription_requests.append(request)
        return TranscriptionResult(text=f"transcript of {request.filename}")


def node(node_id: str, kind: str, **config: Any) -> StudioNode:
    return StudioNode(id=node_id, kind=kind, config=config)


def edge(source: str, source_port: str, target: str, target_port: str) -> StudioEdge:
    return StudioEdge(
        id=f"{source}.{source_port}->{target}.{target_port}",
        from_node_id=source,
        from_port_id=source_port,
        to_node_id=target,
        to_port_id=target_port,
    )


def make_project(
    nodes: list[StudioNode],
    edges: list[StudioEdge] | None = None,
    entry_node_ids: list[str] | None = None,
    **settings: Any,
) -> StudioProject:
    project = StudioProject(
        name="Test Project",
        graph=StudioGraph(nodes=nodes, edges=edges or [], entry_node_ids=entry_node_ids or []),
        permissions_ref=PermissionsRef(policy_path="Test.systemsculpt-assets/policy/grants.json"),
    )
    for key, value in settings.items():
        setattr(project.settings, key, value)
    return project


def make_policy(
    paths: list[str] | None = None,
    domains: list[str] | None = None,
    commands: list[str] | None = None,
) -> PermissionPolicy:
    grants = []
    if paths:
        grants.append(
            CapabilityGrant(capability=Capability.FILESYSTEM, scope=GrantScope(allowed_paths=paths))
        )
    if domains:
        grants.append(
            CapabilityGrant(
                capability=Capability.NETWORK, scope=GrantScope(allowed_domains=domains)
            )
        )
    if commands:
        grants.append(
            CapabilityGrant(
                capability=Capability.CLI, scope=GrantScope(allowed_command_patterns=commands)
            )
        )
    return PermissionPolicy(grants=grants)


@pytest.fixture
def vault_root(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    root.mkdir()
    return root


@pytest.fixture
def vault(vault_root: Path) -> LocalVault:
    return LocalVault(vault_root)


@pytest.fixture
def registry() -> NodeRegistry:
    return register_builtin_nodes(NodeRegistry())


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def make_services(vault: LocalVault, fake_api: FakeApi, tmp_path: Path):
    """Build RunServices for a policy; defaults to granting the temp directory."""

    def _make(
        policy: PermissionPolicy | None = None,
        project_path: str = "Test.systemsculpt",
        **kwargs: Any,
    ) -> RunServices:
        return RunServices(
            vault=vault,
            asset_store=AssetStore(vault),
            permissions=PermissionManager(policy or make_policy(paths=[str(tmp_path)])),
            api=fake_api,
            project_path=project_path,
            temp_dir=tmp_path / "run-temp",
            secret_store=kwargs.pop("secret_store", EnvSecretStore.for_testing({})),
            **kwargs,
        )

    return _make
