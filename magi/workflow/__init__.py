from .base import StepName, WorkflowContext, WorkflowResult, WorkflowStatus, WorkflowStep
from .engine import DeliberationEngine, StepOutcome
from .steps import ConsensusStep, ProposeStep, VoteStep

__all__ = [
    "ConsensusStep",
    "DeliberationEngine",
    "ProposeStep",
    "StepName",
    "StepOutcome",
    "VoteStep",
    "WorkflowContext",
    "WorkflowResult",
    "WorkflowStatus",
    "WorkflowStep",
]
