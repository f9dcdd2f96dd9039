"""
Agent availability pool.
Agent records live in the coordination store, indexed by department and
language; capacity changes are atomic bounded updates so two instances can
never push an agent past max_concurrent_chats.

Version: 1.0.0
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from ..exceptions import AgentNotFoundError
from ..models.agent import Agent, AgentStatus
from ..models.supervisor import AgentWorkload
from ..store import CoordinationStore, Document
from ..utils.clock import Clock, utcnow

logger = logging.getLogger(__name__)

AGENT_KEY = "agent:{}"
ALL_AGENTS_KEY = "agents:all"
DEPARTMENT_KEY = "agents:department:{}"
LANGUAGE_KEY = "agents:language:{}"
JOIN_SEQUENCE_KEY = "agents:join_sequence"

# Index bucket for agents that serve every department
ANY_DEPARTMENT = "_any"


def _department_bucket(department: Optional[str]) -> str:
    return department.strip().lower() if department and department.strip() else ANY_DEPARTMENT


def department_matches(agent: Agent, department: Optional[str]) -> bool:
    """True when either side is department-agnostic or both name the same department."""
    if not department or not agent.department:
        return True
    return agent.department.strip().lower() == department.strip().lower()


def language_matches(agent: Agent, language: Optional[str]) -> bool:
    """Agents without a language list take every language."""
    if not language or not agent.languages:
        return True
    return language.strip().lower() in agent.languages


class AgentPool:
    """
    Shared registry of human agents.

    Features:
    - Register, leave, status and heartbeat updates
    - Department and language indexes for candidate lookup
    - Atomic capacity reservation and release
    - Stale-heartbeat detection
    """

    def __init__(
        self,
        store: CoordinationStore,
        default_max_concurrent_chats: int = 5,
        heartbeat_interval_seconds: int = 30,
        heartbeat_missed_limit: int = 3,
        clock: Clock = utcnow
    ):
        """
        Initialize agent pool.

        Args:
            store: Coordination store
            default_max_concurrent_chats: Capacity of agents that do not state one
            heartbeat_interval_seconds: Expected heartbeat period
            heartbeat_missed_limit: Missed heartbeats before an agent is stale
            clock: Source of the current time
        """
        self.store = store
        self.default_max_concurrent_chats = default_max_concurrent_chats
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.heartbeat_missed_limit = heartbeat_missed_limit
        self.clock = clock

        logger.info(
            f"AgentPool initialized (heartbeat={heartbeat_interval_seconds}s, "
            f"missed_limit={heartbeat_missed_limit})"
        )

    @property
    def heartbeat_timeout(self) -> timedelta:
        return timedelta(seconds=self.heartbeat_interval_seconds * self.heartbeat_missed_limit)

    async def _update(self, agent_id: str, change) -> Optional[Agent]:
        """
        Conditionally update one agent record.

        ``change`` mutates the agent and returns True to write, False to
        leave the record untouched.
        """
        def mutator(current: Optional[Document]) -> Optional[Document]:
            if current is None:
                raise AgentNotFoundError(f"Agent {agent_id} is not registered")
            agent = Agent.from_dict(current)
            if not change(agent):
                return None
            return Agent.model_validate(agent.model_dump()).to_dict()

        written = await self.store.update(AGENT_KEY.format(agent_id), mutator)
        return Agent.from_dict(written) if written is not None else None

    async def _index(self, agent: Agent) -> None:
        await self.store.set_add(ALL_AGENTS_KEY, agent.agent_id)
        await self.store.set_add(DEPARTMENT_KEY.format(_department_bucket(agent.department)), agent.agent_id)
        for language in agent.languages:
            await self.store.set_add(LANGUAGE_KEY.format(language), agent.agent_id)

    async def _unindex(self, agent: Agent) -> None:
        await self.store.set_remove(DEPARTMENT_KEY.format(_department_bucket(agent.department)), agent.agent_id)
        for language in agent.languages:
            await self.store.set_remove(LANGUAGE_KEY.format(language), agent.agent_id)

    # ===========================
    # Membership
    # ===========================

    async def register(
        self,
        agent_id: str,
        department: Optional[str] = None,
        languages: Iterable[str] = (),
        skills: Iterable[str] = (),
        max_concurrent_chats: Optional[int] = None,
        is_supervisor: bool = False
    ) -> Agent:
        """
        Join the pool (dashboard connect).

        A returning agent keeps its join order and its active chats; its
        profile is replaced and it becomes available.
        """
        now = self.clock()
        previous = await self.get_agent(agent_id)
        sequence = previous.join_sequence if previous else await self.store.incr(JOIN_SEQUENCE_KEY)
        requested_max = max_concurrent_chats or self.default_max_concurrent_chats

        def mutator(current: Optional[Document]) -> Document:
            existing = Agent.from_dict(current) if current is not None else None
            active = existing.active_chats if existing else 0
            agent = Agent(
                agent_id=agent_id,
                status=AgentStatus.AVAILABLE,
                department=department,
                languages=list(languages),
                skills=list(skills),
                max_concurrent_chats=max(requested_max, active),
                active_chats=active,
                is_supervisor=is_supervisor,
                last_heartbeat=now,
                joined_at=existing.joined_at if existing else now,
                join_sequence=existing.join_sequence if existing else sequence,
                last_assigned_at=existing.last_assigned_at if existing else None
            )
            return agent.to_dict()

        agent = Agent.from_dict(await self.store.update(AGENT_KEY.format(agent_id), mutator))

        if previous is not None:
            await self._unindex(previous)
        await self._index(agent)

        logger.info(
            f"✓ Agent {agent_id} joined (department={agent.department}, "
            f"languages={agent.languages}, max_chats={agent.max_concurrent_chats})"
        )
        return agent

    async def leave(self, agent_id: str) -> Optional[Agent]:
        """Leave the pool. The record is kept, marked offline."""
        agent = await self.get_agent(agent_id)
        if agent is None:
            return None

        def change(record: Agent) -> bool:
            record.status = AgentStatus.OFFLINE
            return True

        agent = await self._update(agent_id, change)
        await self._unindex(agent)
        logger.info(f"Agent {agent_id} left the pool")
        return agent

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        document = await self.store.get(AGENT_KEY.format(agent_id))
        return Agent.from_dict(document) if document is not None else None

    async def require_agent(self, agent_id: str) -> Agent:
        agent = await self.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} is not registered")
        return agent

    async def _load(self, agent_ids: Iterable[str]) -> List[Agent]:
        agents = []
        for agent_id in sorted(agent_ids):
            agent = await self.get_agent(agent_id)
            if agent is not None:
                agents.append(agent)
        return agents

    async def list_agents(self, status: Optional[AgentStatus] = None) -> List[Agent]:
        agents = await self._load(await self.store.set_members(ALL_AGENTS_KEY))
        if status is not None:
            agents = [agent for agent in agents if agent.status == status]
        return sorted(agents, key=lambda agent: agent.join_sequence)

    # ===========================
    # Status & heartbeat
    # ===========================

    async def update_status(self, agent_id: str, status: AgentStatus) -> Agent:
        def change(agent: Agent) -> bool:
            agent.status = status
            agent.last_heartbeat = self.clock()
            return True

        agent = await self._update(agent_id, change)
        logger.info(f"Agent {agent_id} status -> {status.value}")
        return agent

    async def heartbeat(self, agent_id: str) -> Agent:
        """Record a heartbeat. An agent that was marked offline comes back available."""
        revived = []

        def change(agent: Agent) -> bool:
            agent.last_heartbeat = self.clock()
            if agent.status == AgentStatus.OFFLINE:
                agent.status = AgentStatus.AVAILABLE
                revived.append(agent_id)
            return True

        agent = await self._update(agent_id, change)
        if revived:
            await self._index(agent)
            logger.info(f"Agent {agent_id} is reachable again")
        return agent

    async def find_stale_agents(self, now: Optional[datetime] = None) -> List[Agent]:
        """Agents not offline whose last heartbeat is older than the timeout."""
        cutoff = (now or self.clock()) - self.heartbeat_timeout
        return [
            agent for agent in await self.list_agents()
            if agent.status != AgentStatus.OFFLINE and agent.last_heartbeat < cutoff
        ]

    async def mark_offline(self, agent_id: str, stale_before: Optional[datetime] = None) -> Optional[Agent]:
        """
        Mark an agent offline.

        Returns the agent only to the caller that changed its status; with
        ``stale_before``, an agent whose heartbeat arrived since is left alone.
        """
        def change(agent: Agent) -> bool:
            if agent.status == AgentStatus.OFFLINE:
                return False
            if stale_before is not None and agent.last_heartbeat >= stale_before:
                return False
            agent.status = AgentStatus.OFFLINE
            return True

        agent = await self._update(agent_id, change)
        if agent is not None:
            logger.warning(f"Agent {agent_id} marked offline")
        return agent

    # ===========================
    # Candidates & capacity
    # ===========================

    @staticmethod
    def is_eligible(agent: Agent, department: Optional[str], language: Optional[str]) -> bool:
        return (
            agent.status == AgentStatus.AVAILABLE
            and agent.has_capacity
            and department_matches(agent, department)
            and language_matches(agent, language)
        )

    async def find_candidates(
        self,
        department: Optional[str] = None,
        language: Optional[str] = None
    ) -> List[Agent]:
        """Available agents with spare capacity that match department and language."""
        if department:
            ids: Set[str] = await self.store.set_members(DEPARTMENT_KEY.format(_department_bucket(department)))
            ids |= await self.store.set_members(DEPARTMENT_KEY.format(ANY_DEPARTMENT))
        else:
            ids = await self.store.set_members(ALL_AGENTS_KEY)

        agents = await self._load(ids)
        return [agent for agent in agents if self.is_eligible(agent, department, language)]

    async def has_spare_capacity(self) -> bool:
        return any(agent.has_capacity for agent in await self.list_agents(AgentStatus.AVAILABLE))

    async def reserve_capacity(self, agent_id: str, require_available: bool = True) -> Optional[Agent]:
        """
        Take one chat slot on an agent.

        Returns None when the agent has no free slot, is offline, or (with
        ``require_available``) is not available.
        """
        now = self.clock()

        def change(agent: Agent) -> bool:
            if agent.status == AgentStatus.OFFLINE or not agent.has_capacity:
                return False
            if require_available and agent.status != AgentStatus.AVAILABLE:
                return False
            agent.active_chats += 1
            agent.last_assigned_at = now
            return True

        return await self._update(agent_id, change)

    async def release_capacity(self, agent_id: str) -> Optional[Agent]:
        def change(agent: Agent) -> bool:
            if agent.active_chats == 0:
                return False
            agent.active_chats -= 1
            return True

        try:
            return await self._update(agent_id, change)
        except AgentNotFoundError:
            logger.warning(f"Cannot release capacity of unknown agent {agent_id}")
            return None

    async def get_stats(self) -> Dict[str, Any]:
        agents = await self.list_agents()
        by_status = {status.value: 0 for status in AgentStatus}
        for agent in agents:
            by_status[agent.status.value] += 1

        online = [agent for agent in agents if agent.status != AgentStatus.OFFLINE]
        capacity = sum(agent.max_concurrent_chats for agent in online)
        active = sum(agent.active_chats for agent in online)

        return {
            "total_agents": len(agents),
            "by_status": by_status,
            "total_capacity": capacity,
            "active_chats": active,
            "utilization_percent": round(active / capacity * 100, 1) if capacity else 0.0,
        }

    async def get_workload_distribution(self) -> List[AgentWorkload]:
        """Per-agent load, busiest first; agents with equal load keep join order."""
        rows = [
            AgentWorkload(
                agent_id=agent.agent_id,
                status=agent.status,
                department=agent.department,
                active_chats=agent.active_chats,
                max_concurrent_chats=agent.max_concurrent_chats,
                utilization_percent=round(agent.active_chats / agent.max_concurrent_chats * 100, 1)
            )
            for agent in await self.list_agents()
        ]
        return sorted(rows, key=lambda row: -row.utilization_percent)


__all__ = ['AgentPool', 'department_matches', 'language_matches']
