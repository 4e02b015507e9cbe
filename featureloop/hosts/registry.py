"""
Persistent registry of launched agents.

Survives supervisor restarts so a re-run can tell which agents were
already started and where they live.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from filelock import FileLock


@dataclass
class AgentRecord:
    """Persistent record of one launched agent."""
    agent_id: str
    target: str
    workdir: str
    status: str  # running, terminated
    created_at: str
    updated_at: str
    pid: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AgentRecord":
        return cls(**data)


class AgentRegistry:
    """
    JSON file of agent-id -> AgentRecord.

    Reads and writes are serialized with a file lock next to the registry.
    """

    def __init__(self, registry_file: Path):
        self.registry_file = Path(registry_file)
        self.lock_file = self.registry_file.with_suffix(".lock")
        self.registry_file.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> Dict[str, AgentRecord]:
        if not self.registry_file.exists():
            return {}

        with FileLock(self.lock_file):
            data = json.loads(self.registry_file.read_text() or "{}")
            return {
                agent_id: AgentRecord.from_dict(record)
                for agent_id, record in data.items()
            }

    def _save(self, registry: Dict[str, AgentRecord]) -> None:
        with FileLock(self.lock_file):
            data = {agent_id: record.to_dict() for agent_id, record in registry.items()}
            self.registry_file.write_text(json.dumps(data, indent=2))

    def register(self, record: AgentRecord) -> None:
        registry = self._load()
        registry[record.agent_id] = record
        self._save(registry)

    def get(self, agent_id: str) -> Optional[AgentRecord]:
        return self._load().get(agent_id)

    def update_status(self, agent_id: str, status: str) -> None:
        registry = self._load()
        if agent_id in registry:
            registry[agent_id].status = status
            registry[agent_id].updated_at = datetime.now(timezone.utc).isoformat()
            self._save(registry)

    def list_active(self) -> List[AgentRecord]:
        return [r for r in self._load().values() if r.status == "running"]

    def list_all(self) -> List[AgentRecord]:
        return list(self._load().values())
