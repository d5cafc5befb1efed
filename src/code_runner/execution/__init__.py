from .cancellation import CancellationToken, deadline_scope
from .process_tree import ProcessTreeKiller, default_tree_killer
from .staging import StagedArtifacts, stage
from .supervisor import Supervisor
from .types import ExecutionRequest, RunOutcome, Termination

__all__ = [
    "CancellationToken",
    "ExecutionRequest",
    "ProcessTreeKiller",
    "RunOutcome",
    "StagedArtifacts",
    "Supervisor",
    "Termination",
    "deadline_scope",
    "default_tree_killer",
    "stage",
]
