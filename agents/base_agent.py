# ProcWise/agents/base_agent.py

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AgentStatus(str, Enum):
    """Execution status for an agent."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class AgentContext:
    """Runtime information handed to an agent for one document."""

    workflow_id: str
    agent_id: str
    user_id: str
    input_data: Dict[str, Any]
    parent_agent: Optional[str] = None
    routing_history: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.workflow_id:
            raise ValueError("workflow_id is required for AgentContext")

        if isinstance(self.input_data, dict):
            self.input_data.setdefault("workflow_id", self.workflow_id)

        self.timestamp = datetime.now(timezone.utc)
        self.routing_history.append(self.agent_id)


@dataclass
class AgentOutput:
    """Standardised output returned by agents."""

    status: AgentStatus
    data: Dict[str, Any]
    error: Optional[str] = None
    confidence: Optional[float] = None


class BaseAgent:
    def __init__(self, agent_nick):
        self.agent_nick = agent_nick
        self.settings = agent_nick.settings
        logger.info("Initialized agent: %s", self.__class__.__name__)

    def run(self, context: AgentContext) -> AgentOutput:
        raise NotImplementedError("Each agent must implement its own 'run' method.")

    def execute(self, context: AgentContext) -> AgentOutput:
        """Run the agent, converting unexpected errors into a FAILED output."""

        logger.info("%s: starting workflow %s", self.__class__.__name__, context.workflow_id)
        start_ts = datetime.now(timezone.utc)
        try:
            result = self.run(context)
        except Exception as exc:
            logger.exception("%s execution failed", self.__class__.__name__)
            result = AgentOutput(status=AgentStatus.FAILED, data={}, error=str(exc))
        elapsed_ms = int((datetime.now(timezone.utc) - start_ts).total_seconds() * 1000)
        logger.info(
            "%s: finished with status %s in %dms",
            self.__class__.__name__,
            result.status.value,
            elapsed_ms,
        )
        return result
