"""
Per-service status tracking and the aggregated result of a run.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class NodeStatus(str, Enum):
    """Status of a service during a single run."""

    PENDING = "pending"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.RUNNING, NodeStatus.FAILED, NodeStatus.SKIPPED)


class SkipReason(str, Enum):
    """Why a service was skipped without an adapter call."""

    HOOK_MISSING = "hook missing"
    DEPENDENCY_NOT_RUNNING = "dependency not running"
    ABORTED = "aborted"


@dataclass
class NodeResult:
    """
    Outcome for one service. Written only by the worker that runs the
    service, or by the scheduler for services it never dispatches.
    """

    service: str
    action: str
    status: NodeStatus = NodeStatus.PENDING
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    reason: Optional[str] = None
    duration: float = 0.0


@dataclass
class RunResult:
    """Aggregated report of a command across the services it touched."""

    command: str
    nodes: Dict[str, NodeResult] = field(default_factory=dict)
    aborted: bool = False

    @property
    def failed(self) -> bool:
        return any(n.status == NodeStatus.FAILED for n in self.nodes.values())

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def with_status(self, status: NodeStatus) -> List[str]:
        return [name for name, node in self.nodes.items() if node.status == status]

    def statuses(self) -> Dict[str, NodeStatus]:
        return {name: node.status for name, node in self.nodes.items()}
