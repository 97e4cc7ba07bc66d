"""Tests for the run-scoped service boundary: temp files and local deletes."""

from pathlib import Path

import pytest
from conftest import make_policy

from studio.errors import CapabilityDeniedError


class TestTempFiles:
    @pytest.mark.asyncio
    async def test_temp_file_lands_in_temp_dir_with_sanitized_name(self, make_services):
        services = make_services()

        path = Path(await services.write_temp_file(b"RIFF", "clip: take 1/2", ".wav"))

        assert path.parent == services.temp_dir
        assert path.name.startswith("clip-take-1-2-")
        assert path.suffix == ".wav"
        assert path.read_bytes() == b"RIFF"

    @pytest.mark.asyncio
    async def test_empty_prefix_and_extension(self, make_services):
        services = make_services()

        path = Path(await services.write_temp_file(b"x"))

        assert path.name.startswith("studio-")
        assert path.suffix == ""

    @pytest.mark.asyncio
    async def test_temp_file_can_be_deleted_without_a_grant(self, make_services):
        services = make_services(policy=make_policy())
        path = await services.write_temp_file(b"x", "chunk", "mp3")

        await services.delete_local_file(path)

        assert not Path(path).exists()


class TestDeleteLocalFile:
    @pytest.mark.asyncio
    async def test_ungranted_file_outside_vault_survives(
        self, make_services, vault_root, tmp_path
    ):
        outside = tmp_path / "outside.txt"
        outside.write_text("keep me")
        services = make_services(policy=make_policy(paths=[str(vault_root)]))

        with pytest.raises(CapabilityDeniedError):
            await services.delete_local_file(str(outside))

        assert outside.read_text() == "keep me"

    @pytest.mark.asyncio
    async def test_traversal_out_of_temp_dir_is_checked(self, make_services, tmp_path):
        outside = tmp_path / "outside.txt"
        outside.write_text("keep me")
        services = make_services(policy=make_policy())

        with pytest.raises(CapabilityDeniedError):
            await services.delete_local_file(str(services.temp_dir / ".." / "outside.txt"))

        assert outside.exists()

    @pytest.mark.asyncio
    async def test_granted_file_is_deleted(self, make_services, tmp_path):
        target = tmp_path / "granted.txt"
        target.write_text("bye")
        services = make_services(policy=make_policy(paths=[str(tmp_path)]))

        await services.delete_local_file(str(target))

        assert not target.exists()

    @pytest.mark.asyncio
    async def test_missing_file_is_not_an_error(self, make_services, tmp_path):
        await make_services().delete_local_file(str(tmp_path / "never-written.bin"))

    @pytest.mark.asyncio
    async def test_relative_path_rejected(self, make_services):
        with pytest.raises(ValueError, match="absolute"):
            await make_services().delete_local_file("Notes/todo.md")
