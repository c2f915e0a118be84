"""Pydantic v2 value models for pwaforge.

All models are frozen; state lives in the stores, not in these objects.
"""

from pwaforge.models.bundles import (
    PRIMARY_ENTRY,
    REQUIRED_FILES,
    SHARED_ASSETS,
    BundleInfo,
    BundleVersion,
    WebManifest,
)
from pwaforge.models.completion import (
    ChatMessage,
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
)
from pwaforge.models.generation import (
    VALID_TRANSITIONS,
    CredentialSource,
    ErrorKind,
    GenerationKind,
    GenerationOutcome,
    GenerationRequest,
    GenerationState,
    StateTransition,
)
from pwaforge.models.quota import QuotaWindow

__all__ = [
    "PRIMARY_ENTRY",
    "REQUIRED_FILES",
    "SHARED_ASSETS",
    "VALID_TRANSITIONS",
    "BundleInfo",
    "BundleVersion",
    "ChatMessage",
    "CompletionChoice",
    "CompletionRequest",
    "CompletionResponse",
    "CredentialSource",
    "ErrorKind",
    "GenerationKind",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationState",
    "QuotaWindow",
    "StateTransition",
    "WebManifest",
]
