"""Generation pipeline — credential, completion, extraction, materialization.

One ``run()`` drives a single job through the state machine::

    IDLE -> ACQUIRING_CREDENTIAL -> CALLING -> PARSING -> MATERIALIZING -> DONE

Credential order: the user's own key, else the demo key while the daily
quota allows.  Transient network failures are retried with linear backoff;
HTTP error statuses are classified and never retried; anything else ends
the job.  A demo quota slot is reserved before the call and kept only if
the API answered with at least one choice.  Parsing never fails a job.  This is the only layer that turns
failures into user-facing text.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from pwaforge.bridge.completion_client import (
    CompletionClient,
    CompletionFormatError,
    CompletionHTTPError,
    OpenRouterClient,
    TransientNetworkError,
)
from pwaforge.config import AppConfig
from pwaforge.core.credential_broker import CredentialBroker
from pwaforge.core.materializer import (
    ArtifactMaterializer,
    BundleNotFoundError,
    MaterializationCancelled,
)
from pwaforge.core.prompt_builder import build_generation_prompt, build_rework_prompt
from pwaforge.core.prompt_rewriter import PromptRewriter
from pwaforge.core.response_extractor import extract_files
from pwaforge.core.state_machine import GenerationStateMachine, TransitionObserver
from pwaforge.core.state_store import StateStore
from pwaforge.core.version_store import VersionStore
from pwaforge.models.bundles import REQUIRED_FILES
from pwaforge.models.completion import ChatMessage, CompletionRequest, CompletionResponse
from pwaforge.models.generation import (
    CredentialSource,
    ErrorKind,
    GenerationKind,
    GenerationOutcome,
    GenerationRequest,
    GenerationState,
)

logger = logging.getLogger(__name__)

MSG_BLANK_PROMPT = "Please enter a description for your app."
MSG_NO_CREDENTIAL = "API key not set. Please go to Settings to add your OpenRouter API key."
MSG_EMPTY_RESPONSE = "No response from AI. Please try again."
MSG_CANCELLED = "Generation cancelled."


class GenerationCancelled(RuntimeError):
    """Raised inside the pipeline when the job's cancel event is set."""


class _JobFailure(Exception):
    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass
class _JobContext:
    attempts: int = 0
    source: CredentialSource | None = None
    tier: str | None = None
    bundle_id: str | None = None
    # Window start of an unconfirmed demo quota slot
    reservation: int | None = None


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP error status onto the failure taxonomy."""
    if status_code in (401, 403):
        return ErrorKind.CREDENTIAL_REJECTED
    if status_code == 408:
        return ErrorKind.REQUEST_TIMEOUT
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if 500 <= status_code < 600:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.API_ERROR


def _rework_target(request: GenerationRequest) -> str:
    """The bundle a rework edits; a request built without validation may lack one."""
    if not request.target_bundle_id:
        raise _JobFailure(ErrorKind.INVALID_REQUEST, "Rework requests need a target bundle.")
    return request.target_bundle_id


_STATUS_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.CREDENTIAL_REJECTED: "The API rejected the key (HTTP {status}). Check your OpenRouter API key in Settings.",
    ErrorKind.REQUEST_TIMEOUT: "The API timed out (HTTP {status}). Please try again.",
    ErrorKind.RATE_LIMITED: "Rate limited by the API (HTTP {status}). Wait a moment and try again.",
    ErrorKind.SERVER_ERROR: "The API had a server error (HTTP {status}). Please try again later.",
    ErrorKind.API_ERROR: "The API returned an error (HTTP {status}): {detail}",
}


class GenerationPipeline:
    """Runs generation jobs end to end.

    Parameters
    ----------
    config:
        Models, retry policy and rewrite switch.
    broker:
        Source of the user and demo credentials.
    client:
        Completion API client.
    materializer:
        Writes bundles.
    versions:
        Snapshots bundles before a rework; optional.
    rewriter:
        Elaborates prompts before creation; optional.
    """

    def __init__(
        self,
        config: AppConfig,
        broker: CredentialBroker,
        client: CompletionClient,
        materializer: ArtifactMaterializer,
        *,
        versions: VersionStore | None = None,
        rewriter: PromptRewriter | None = None,
    ) -> None:
        self._config = config
        self._broker = broker
        self._client = client
        self._materializer = materializer
        self._versions = versions
        self._rewriter = rewriter

    @classmethod
    def from_config(cls, config: AppConfig) -> "GenerationPipeline":
        """Wire the default collaborators from configuration."""
        store = StateStore(config.state_db_path)
        broker = CredentialBroker(config, store)
        client = OpenRouterClient(
            config.completion_api_url,
            timeout_seconds=config.request_timeout_seconds,
            site_url=config.site_url,
            site_title=config.site_title,
        )
        materializer = ArtifactMaterializer(
            config.bundles_path,
            assets_dir=config.assets_path,
            chunk_size=config.write_chunk_size,
            chunk_pause_seconds=config.write_chunk_pause_seconds,
        )
        versions = VersionStore(config.versions_path, materializer, max_versions=config.max_versions)
        rewriter = PromptRewriter(client, config.rewrite_model) if config.prompt_rewrite_enabled else None
        return cls(config, broker, client, materializer, versions=versions, rewriter=rewriter)

    @property
    def broker(self) -> CredentialBroker:
        return self._broker

    @property
    def materializer(self) -> ArtifactMaterializer:
        return self._materializer

    @property
    def versions(self) -> VersionStore | None:
        return self._versions

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _acquire_credential(self, ctx: _JobContext) -> str:
        user_key = self._broker.get_user_api_key()
        if user_key:
            ctx.source = CredentialSource.USER
            return user_key

        ctx.reservation = self._broker.reserve_demo_use()
        if ctx.reservation is None:
            limit = self._config.max_daily_demo_uses
            raise _JobFailure(
                ErrorKind.QUOTA_EXCEEDED,
                f"Daily demo limit reached ({limit} generations per "
                f"{self._config.demo_window_hours} hours). "
                "Add your own OpenRouter API key in Settings to continue.",
            )
        demo_key = self._broker.acquire_demo_credential()
        if not demo_key:
            raise _JobFailure(ErrorKind.CREDENTIAL_MISSING, MSG_NO_CREDENTIAL)
        ctx.source = CredentialSource.DEMO
        return demo_key

    def _call_with_retry(
        self,
        request: CompletionRequest,
        api_key: str,
        cancel: threading.Event,
        ctx: _JobContext,
    ) -> CompletionResponse:
        max_attempts = max(1, self._config.max_attempts)
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            if cancel.is_set():
                raise GenerationCancelled(MSG_CANCELLED)
            ctx.attempts = attempt
            try:
                return self._client.complete(request, api_key)
            except TransientNetworkError as exc:
                last_error = exc
                logger.warning("Attempt %d/%d failed: %s", attempt, max_attempts, exc)
                if attempt < max_attempts:
                    delay = self._config.retry_backoff_seconds * attempt
                    if cancel.wait(delay):
                        raise GenerationCancelled(MSG_CANCELLED)
            except CompletionHTTPError as exc:
                kind = classify_status(exc.status_code)
                if kind == ErrorKind.CREDENTIAL_REJECTED and ctx.source == CredentialSource.DEMO:
                    # Force a fresh fetch next time
                    self._broker.clear_demo_api_key()
                template = _STATUS_MESSAGES[kind]
                raise _JobFailure(kind, template.format(status=exc.status_code, detail=exc.message))
            except CompletionFormatError as exc:
                raise _JobFailure(ErrorKind.API_ERROR, f"Unexpected response from the API: {exc}")

        raise _JobFailure(
            ErrorKind.NETWORK_TRANSIENT,
            f"Failed to generate app after {max_attempts} attempts: {last_error}. "
            "Please check your network connection and try again.",
        )

    def _build_prompt(self, request: GenerationRequest, api_key: str) -> tuple[str, str]:
        """Return ``(model, prompt_text)`` for *request*."""
        if request.kind == GenerationKind.REWORK:
            target = _rework_target(request)
            try:
                current = self._materializer.read_bundle_files(target, REQUIRED_FILES)
            except BundleNotFoundError as exc:
                raise _JobFailure(ErrorKind.BUNDLE_NOT_FOUND, str(exc)) from exc
            missing = [f for f in REQUIRED_FILES if f not in current]
            if missing:
                raise _JobFailure(
                    ErrorKind.BUNDLE_NOT_FOUND,
                    f"Bundle {target} is missing required files: {', '.join(missing)}",
                )
            text = build_rework_prompt(request.prompt, current, self._config.rework_file_excerpt_chars)
            return self._config.rework_model, text

        prompt = request.prompt
        if self._rewriter is not None:
            prompt = self._rewriter.rewrite(prompt, api_key)
        return self._config.generation_model, build_generation_prompt(prompt)

    def _materialize(
        self, request: GenerationRequest, files: dict[str, str], cancel: threading.Event
    ) -> str:
        if request.kind == GenerationKind.REWORK:
            bundle_id = _rework_target(request)
            if self._versions is not None:
                self._versions.snapshot(bundle_id)
            self._materializer.update_bundle(bundle_id, files, cancel=cancel)
            return bundle_id
        info = self._materializer.create_bundle(files, request.name, cancel=cancel)
        return info.id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        request: GenerationRequest,
        *,
        cancel: threading.Event | None = None,
        observer: TransitionObserver | None = None,
    ) -> GenerationOutcome:
        """Run one job to completion and return its outcome.

        Never raises for job-level failures; they are reported in the
        outcome's ``error_kind`` and ``message``.
        """
        cancel = cancel or threading.Event()
        machine = GenerationStateMachine(observer)
        ctx = _JobContext(bundle_id=request.target_bundle_id)

        def failed(kind: ErrorKind, message: str) -> GenerationOutcome:
            if ctx.reservation is not None:
                self._broker.release_demo_use(ctx.reservation)
                ctx.reservation = None
            machine.fail(message)
            logger.info("Generation failed (%s): %s", kind.value, message)
            return self._outcome(machine, ctx, success=False, kind=kind, message=message)

        if not request.prompt.strip():
            return failed(ErrorKind.INVALID_REQUEST, MSG_BLANK_PROMPT)

        try:
            machine.transition(GenerationState.ACQUIRING_CREDENTIAL)
            api_key = self._acquire_credential(ctx)

            machine.transition(GenerationState.CALLING, ctx.source.value if ctx.source else "")
            model, prompt_text = self._build_prompt(request, api_key)
            completion = CompletionRequest(
                model=model, messages=[ChatMessage(role="user", content=prompt_text)]
            )
            response = self._call_with_retry(completion, api_key, cancel, ctx)
            if not response.choices:
                raise _JobFailure(ErrorKind.EMPTY_RESPONSE, MSG_EMPTY_RESPONSE)
            # choices arrived: the demo slot stays counted
            ctx.reservation = None
            content = response.first_content or ""
            if not content.strip():
                raise _JobFailure(ErrorKind.EMPTY_RESPONSE, MSG_EMPTY_RESPONSE)

            machine.transition(GenerationState.PARSING)
            extraction = extract_files(content)
            ctx.tier = extraction.tier.value

            if cancel.is_set():
                raise GenerationCancelled(MSG_CANCELLED)
            machine.transition(GenerationState.MATERIALIZING, f"{len(extraction.files)} file(s)")
            ctx.bundle_id = self._materialize(request, extraction.files, cancel)

            machine.transition(GenerationState.DONE)
        except _JobFailure as failure:
            return failed(failure.kind, failure.message)
        except (GenerationCancelled, MaterializationCancelled):
            return failed(ErrorKind.CANCELLED, MSG_CANCELLED)
        except BundleNotFoundError as exc:
            return failed(ErrorKind.BUNDLE_NOT_FOUND, str(exc))
        except OSError as exc:
            logger.exception("Writing bundle failed")
            return failed(ErrorKind.MATERIALIZATION_IO, f"Failed to save app files: {exc}")
        except Exception as exc:
            logger.exception("Generation aborted by unexpected error")
            return failed(ErrorKind.UNEXPECTED, f"Unexpected error: {exc}")

        verb = "updated" if request.kind == GenerationKind.REWORK else "created"
        logger.info("Bundle %s %s", ctx.bundle_id, verb)
        return self._outcome(machine, ctx, success=True, message=f"App {verb}: {ctx.bundle_id}")

    @staticmethod
    def _outcome(
        machine: GenerationStateMachine,
        ctx: _JobContext,
        *,
        success: bool,
        message: str,
        kind: ErrorKind | None = None,
    ) -> GenerationOutcome:
        return GenerationOutcome(
            success=success,
            state=machine.state,
            bundle_id=ctx.bundle_id,
            error_kind=kind,
            message=message,
            attempts=ctx.attempts,
            credential_source=ctx.source,
            extraction_tier=ctx.tier,
            transitions=machine.history,
        )
