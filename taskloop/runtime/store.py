"""
Durable per-agent state.

One JSON document per worker. ``FileStateStore`` writes to a temporary file,
fsyncs it and renames it over the old document, so a crash mid-write leaves
the previous state readable. Agent ids are URL-encoded before being used as
filenames (e.g. agent_id = "../../../etc/passwd" stays inside ``base_dir``).
"""

import json
import os
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote, unquote

import aiofiles
from pydantic import ValidationError

from taskloop.agent.state import AgentState
from taskloop.errors import StorageError


class StateStore(Protocol):
    async def read(self, agent_id: str) -> Optional[AgentState]: ...

    async def write(self, agent_id: str, state: AgentState) -> None: ...

    async def delete(self, agent_id: str) -> None: ...

    async def list_agents(self) -> list[str]: ...


async def write_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content``; the data is on disk when this returns."""
    tmp_path = path.with_name(path.name + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
        await f.write(content)
        await f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


class FileStateStore:
    """State store with one ``<agent_id>.json`` file per worker."""

    def __init__(self, base_dir: str = "./.taskloop/state") -> None:
        self.base_dir: Path = Path(base_dir)

    def _get_path(self, agent_id: str) -> Path:
        safe_id = quote(agent_id, safe="")
        return self.base_dir / f"{safe_id}.json"

    async def read(self, agent_id: str) -> Optional[AgentState]:
        """Load the state, or None when the worker has never been written."""
        file_path = self._get_path(agent_id)
        try:
            async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read state of {agent_id}: {e}") from e

        try:
            return AgentState.model_validate_json(content)
        except ValidationError as e:
            raise StorageError(f"Corrupted state for {agent_id}: {e}") from e

    async def write(self, agent_id: str, state: AgentState) -> None:
        """Atomically and durably replace the stored state."""
        try:
            await write_atomic(self._get_path(agent_id), state.model_dump_json(indent=2))
        except OSError as e:
            raise StorageError(f"Failed to write state of {agent_id}: {e}") from e

    async def delete(self, agent_id: str) -> None:
        try:
            self._get_path(agent_id).unlink()
        except FileNotFoundError:
            pass

    async def list_agents(self) -> list[str]:
        """List all stored worker ids."""
        try:
            files = list(self.base_dir.iterdir())
        except FileNotFoundError:
            return []
        return [unquote(f.stem) for f in files if f.suffix == ".json"]


class MemoryStateStore:
    """In-process store holding serialized JSON so callers never share objects."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def read(self, agent_id: str) -> Optional[AgentState]:
        raw = self._data.get(agent_id)
        if raw is None:
            return None
        return AgentState.model_validate_json(raw)

    async def write(self, agent_id: str, state: AgentState) -> None:
        self._data[agent_id] = state.model_dump_json()

    async def delete(self, agent_id: str) -> None:
        self._data.pop(agent_id, None)

    async def list_agents(self) -> list[str]:
        return list(self._data)

    def dump(self, agent_id: str) -> Optional[dict]:
        """Raw stored document, for inspection."""
        raw = self._data.get(agent_id)
        return json.loads(raw) if raw is not None else None
