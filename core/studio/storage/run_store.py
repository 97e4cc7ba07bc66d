"""
Run Store - snapshots, event logs and the run index.

Storage layout::

    <assets dir>/runs/
      index.json                 # list of RunSummary, newest first
      <run_id>/snapshot.json     # project + policy the run executed against
      <run_id>/events.ndjson     # one RunEvent per line, appended as they happen

The index is trimmed to the project's ``retention.max_runs``; directories of
runs that fall off the index are deleted.
"""

import asyncio
import hashlib
import json
import logging

from pydantic import ValidationError

from studio.schemas.run import RunEvent, RunSnapshot, RunSummary
from studio.storage.paths import project_run_dir, project_runs_dir, project_runs_index_path
from studio.storage.vault import VaultAdapter, ensure_dir, join_vault_path

logger = logging.getLogger(__name__)


class RunStore:
    def __init__(self, vault: VaultAdapter):
        self.vault = vault
        self._index_lock = asyncio.Lock()

    async def create_run(self, project_path: str, snapshot: RunSnapshot) -> str:
        """Write the run snapshot and return its SHA-256 hash."""
        run_dir = project_run_dir(project_path, snapshot.run_id)
        await ensure_dir(self.vault, run_dir)

        content = snapshot.to_json() + "\n"
        await self.vault.write(join_vault_path(run_dir, "snapshot.json"), content)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    async def append_event(self, project_path: str, event: RunEvent) -> None:
        path = join_vault_path(project_run_dir(project_path, event.run_id), "events.ndjson")
        await self.vault.append(path, json.dumps(event.to_document()) + "\n")

    async def read_events(self, project_path: str, run_id: str) -> list[RunEvent]:
        path = join_vault_path(project_run_dir(project_path, run_id), "events.ndjson")
        if not await self.vault.exists(path):
            return []
        text = await self.vault.read(path)
        return [RunEvent.model_validate_json(line) for line in text.splitlines() if line.strip()]

    async def list_runs(self, project_path: str) -> list[RunSummary]:
        path = project_runs_index_path(project_path)
        if not await self.vault.exists(path):
            return []
        try:
            raw = json.loads(await self.vault.read(path))
        except json.JSONDecodeError as e:
            logger.warning(f"Run index {path} is corrupt, starting a new one: {e}")
            return []

        summaries = []
        for item in raw if isinstance(raw, list) else []:
            try:
                summaries.append(RunSummary.model_validate(item))
            except ValidationError:
                logger.debug("Dropping invalid run summary from index")
        return summaries

    async def record_summary(self, project_path: str, summary: RunSummary, max_runs: int) -> None:
        """Insert ``summary`` at the head of the index and prune old runs."""
        async with self._index_lock:
            runs = [r for r in await self.list_runs(project_path) if r.run_id != summary.run_id]
            runs.insert(0, summary)
            kept, pruned = runs[: max(1, max_runs)], runs[max(1, max_runs) :]

            await ensure_dir(self.vault, project_runs_dir(project_path))
            await self.vault.write(
                project_runs_index_path(project_path),
                json.dumps([r.to_document() for r in kept], indent=2) + "\n",
            )

        for old in pruned:
            logger.debug(f"Pruning run {old.run_id} beyond retention of {max_runs}")
            await self.vault.remove_tree(project_run_dir(project_path, old.run_id))
