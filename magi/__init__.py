"""
MAGI Deliberation Engine

Three language-model agents (CASPER, BALTHASAR, MELCHIOR) propose answers to
a question, score each other's proposals, and a vote tally selects the
consensus. Sessions, messages and votes live in PostgreSQL.
"""

__version__ = "0.1.0"

# Configuration
from magi.config import Settings

# Context assembly
from magi.context import ContextAssembler, ContextBundle

# Diagnostics
from magi.diagnostics import Diagnostics, build_diagnostics

# Errors
from magi.errors import MagiError, ProviderError, ProviderTimeoutError, StorageError

# Models
from magi.models import (
    Agent,
    CodeArtifact,
    CodeChunk,
    Consensus,
    MagiSession,
    Message,
    MessageRole,
    Provider,
    SessionStatus,
    Vote,
)

# Provider invocation
from magi.providers import Credentials, InvokeOptions, ProviderClient, ProviderResult

# Service envelope
from magi.service import Envelope, MagiService

# Voting
from magi.voting import judge_vote, parse_vote_response

# Workflow
from magi.workflow import DeliberationEngine, StepName, StepOutcome

__all__ = [
    # Version
    "__version__",
    # Models
    "Agent",
    "CodeArtifact",
    "CodeChunk",
    "Consensus",
    "MagiSession",
    "Message",
    "MessageRole",
    "Provider",
    "SessionStatus",
    "Vote",
    # Config
    "Settings",
    # Errors
    "MagiError",
    "ProviderError",
    "ProviderTimeoutError",
    "StorageError",
    # Context
    "ContextAssembler",
    "ContextBundle",
    # Providers
    "Credentials",
    "InvokeOptions",
    "ProviderClient",
    "ProviderResult",
    # Voting
    "judge_vote",
    "parse_vote_response",
    # Workflow
    "DeliberationEngine",
    "StepName",
    "StepOutcome",
    # Diagnostics
    "Diagnostics",
    "build_diagnostics",
    # Service
    "Envelope",
    "MagiService",
]
