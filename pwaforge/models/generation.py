"""Generation job models — request, state machine states, outcome."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GenerationKind(str, Enum):
    """Whether a job creates a new bundle or reworks an existing one."""

    CREATE = "create"
    REWORK = "rework"


class GenerationState(str, Enum):
    """States of a single generation job."""

    IDLE = "idle"
    ACQUIRING_CREDENTIAL = "acquiring_credential"
    CALLING = "calling"
    PARSING = "parsing"
    MATERIALIZING = "materializing"
    DONE = "done"
    FAILED = "failed"


# Valid state transitions, enforced by GenerationStateMachine.
# DONE and FAILED are terminal.
VALID_TRANSITIONS: dict[GenerationState, set[GenerationState]] = {
    GenerationState.IDLE: {GenerationState.ACQUIRING_CREDENTIAL, GenerationState.FAILED},
    GenerationState.ACQUIRING_CREDENTIAL: {GenerationState.CALLING, GenerationState.FAILED},
    GenerationState.CALLING: {GenerationState.PARSING, GenerationState.FAILED},
    GenerationState.PARSING: {GenerationState.MATERIALIZING, GenerationState.FAILED},
    GenerationState.MATERIALIZING: {GenerationState.DONE, GenerationState.FAILED},
    GenerationState.DONE: set(),  # terminal
    GenerationState.FAILED: set(),  # terminal
}


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced in GenerationOutcome."""

    NETWORK_TRANSIENT = "network_transient"
    RATE_LIMITED = "rate_limited"
    REQUEST_TIMEOUT = "request_timeout"
    SERVER_ERROR = "server_error"
    API_ERROR = "api_error"
    CREDENTIAL_REJECTED = "credential_rejected"
    CREDENTIAL_MISSING = "credential_missing"
    QUOTA_EXCEEDED = "quota_exceeded"
    EMPTY_RESPONSE = "empty_response"
    BUNDLE_NOT_FOUND = "bundle_not_found"
    INVALID_REQUEST = "invalid_request"
    MATERIALIZATION_IO = "materialization_io"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class CredentialSource(str, Enum):
    """Which credential a job ended up calling the API with."""

    USER = "user"
    DEMO = "demo"


class GenerationRequest(BaseModel):
    """A prompt plus what to do with the result."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    kind: GenerationKind = GenerationKind.CREATE
    target_bundle_id: str | None = None
    name: str = "Generated PWA"

    @model_validator(mode="after")
    def _rework_needs_target(self) -> "GenerationRequest":
        if self.kind == GenerationKind.REWORK and not self.target_bundle_id:
            raise ValueError("rework requests require target_bundle_id")
        return self


class StateTransition(BaseModel):
    """Records a single state transition of a job."""

    model_config = ConfigDict(frozen=True)

    from_state: GenerationState
    to_state: GenerationState
    timestamp_utc: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: str = ""


class GenerationOutcome(BaseModel):
    """Terminal result of a generation job."""

    model_config = ConfigDict(frozen=True)

    success: bool
    state: GenerationState
    bundle_id: str | None = None
    error_kind: ErrorKind | None = None
    message: str = ""
    attempts: int = 0
    credential_source: CredentialSource | None = None
    extraction_tier: str | None = None
    transitions: list[StateTransition] = []
