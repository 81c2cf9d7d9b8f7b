"""
Domain models — Pydantic types for the stack deploy agent.

All models are re-exported here for convenient access:

    from stack_deploy.core.models import StackDescriptor, SecretPath, DeploymentOutcome
"""

from stack_deploy.core.models.action import Action, Receipt
from stack_deploy.core.models.outcome import DeploymentOutcome, DeploymentReport
from stack_deploy.core.models.repo import RepoSync, RepoUpdate
from stack_deploy.core.models.stack import (
    ANY_HOST,
    SecretPath,
    StackDeclaration,
    StackDescriptor,
)
from stack_deploy.core.models.state import AgentState, CycleRecord

__all__ = [
    "ANY_HOST",
    # action.py
    "Action",
    # state.py
    "AgentState",
    "CycleRecord",
    # outcome.py
    "DeploymentOutcome",
    "DeploymentReport",
    "Receipt",
    # repo.py
    "RepoSync",
    "RepoUpdate",
    # stack.py
    "SecretPath",
    "StackDeclaration",
    "StackDescriptor",
]
