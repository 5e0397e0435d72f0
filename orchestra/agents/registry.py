"""Static catalog of agent definitions."""

from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, Field


CATALOG_PATH = Path(__file__).with_name("catalog.yaml")

CATEGORY_ORDER = ["strategy", "creative", "marketing", "design", "engineering", "quality"]


class CatalogError(Exception):
    pass


class AgentDefinition(BaseModel):
    id: str
    name: str
    role: str
    category: str
    deliverables: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    description: str = ""

    def serves_channel(self, channel: Optional[str]) -> bool:
        """Agents without a channel list are channel-agnostic."""
        if channel is None or not self.channels:
            return True
        return channel in self.channels


class AgentRegistry:
    """Read-only lookup over the agent catalog, preserving catalog order."""

    def __init__(self, agents: Iterable[AgentDefinition]):
        self._agents: List[AgentDefinition] = list(agents)
        self._by_id: Dict[str, AgentDefinition] = {}
        for agent in self._agents:
            if agent.id in self._by_id:
                raise CatalogError(f"Duplicate agent id in catalog: {agent.id}")
            self._by_id[agent.id] = agent

    @classmethod
    def from_yaml(cls, path: Path = CATALOG_PATH) -> "AgentRegistry":
        if not path.exists():
            raise CatalogError(f"Agent catalog not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        entries = data.get("agents")
        if not isinstance(entries, list):
            raise CatalogError("Agent catalog must define an 'agents' list")
        return cls(AgentDefinition.model_validate(entry) for entry in entries)

    def all(self) -> List[AgentDefinition]:
        return list(self._agents)

    def get(self, agent_id: str) -> Optional[AgentDefinition]:
        return self._by_id.get(agent_id)

    def require(self, agent_id: str) -> AgentDefinition:
        agent = self.get(agent_id)
        if agent is None:
            raise KeyError(f"Unknown agent: {agent_id}")
        return agent

    def by_category(self, category: str) -> List[AgentDefinition]:
        return [a for a in self._agents if a.category == category]

    def producers(
        self,
        deliverable_type: str,
        categories: Optional[Iterable[str]] = None,
        channel: Optional[str] = None,
    ) -> List[AgentDefinition]:
        """Agents able to produce ``deliverable_type``, in catalog order."""
        allowed = set(categories) if categories is not None else None
        return [
            a for a in self._agents
            if deliverable_type in a.deliverables
            and (allowed is None or a.category in allowed)
            and a.serves_channel(channel)
        ]

    def grouped(self) -> Dict[str, List[AgentDefinition]]:
        groups: Dict[str, List[AgentDefinition]] = {c: [] for c in CATEGORY_ORDER}
        for agent in self._agents:
            groups.setdefault(agent.category, []).append(agent)
        return {k: v for k, v in groups.items() if v}


_registry: Optional[AgentRegistry] = None


def get_agent_registry() -> AgentRegistry:
    """Load the packaged catalog once per process."""
    global _registry
    if _registry is None:
        _registry = AgentRegistry.from_yaml()
    return _registry
