"""Pipeline engine: the single entry point for release builds.

This module provides:
- PipelineEngine.submit(): run one trigger event to a terminal outcome
- PipelineEngine.submit_many(): independent runs on a bounded thread pool
- create_pipeline_engine(): wire the default components from settings

Within a run the steps are strictly sequential:
validate trigger -> compute cache key -> cache lookup -> build
-> cache store (miss only) -> publish. The engine holds no state between
submit() calls beyond references to its components; every run's state
lives in its BuildRun record.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from release_pipeline.artifacts.sink import ArtifactSink, LocalStorageBackend
from release_pipeline.builds.checkout import (
    DirectoryCheckout,
    GitArchiveCheckout,
    SourceCheckout,
)
from release_pipeline.builds.executor import (
    BuildExecutor,
    BuildOutcome,
    CommandProvisioner,
)
from release_pipeline.builds.models import BuildRun
from release_pipeline.cache.cache_key import compute_cache_key_from_definition
from release_pipeline.cache.store import CacheStore, create_cache_store
from release_pipeline.config import Settings, get_settings
from release_pipeline.db import get_session, open_session_factory
from release_pipeline.errors import (
    BuildCommandFailedError,
    InvalidTriggerError,
    PipelineError,
    ProvisioningFailedError,
)
from release_pipeline.pipeline.definition import (
    PipelineDefinition,
    load_pipeline_definition,
)
from release_pipeline.pipeline.triggers import validate_trigger
from release_pipeline.types import (
    BuildRunResult,
    BuildStatus,
    CacheEntry,
    FailureReason,
    TriggerEvent,
)

logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    sleep = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Provisioning attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        exc,
        sleep,
    )


class PipelineEngine:
    """Orchestrates cache, executor and sink for each trigger event.

    Args:
        cache_store: Build-environment cache.
        executor: Build executor.
        sink: Artifact sink.
        definition: Pipeline definition.
        definition_root: Directory the build-definition paths are relative to.
        session_factory: Session factory for build run records.
        settings: Application settings (retry and concurrency bounds).
    """

    def __init__(
        self,
        cache_store: CacheStore,
        executor: BuildExecutor,
        sink: ArtifactSink,
        definition: PipelineDefinition,
        definition_root: Path,
        session_factory: sessionmaker[Session],
        settings: Settings | None = None,
    ) -> None:
        self.cache_store = cache_store
        self.executor = executor
        self.sink = sink
        self.definition = definition
        self.definition_root = Path(definition_root)
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def submit(
        self,
        event: TriggerEvent,
        cancel_token: threading.Event | None = None,
    ) -> BuildRunResult:
        """Run one trigger event to a terminal outcome.

        Exactly one BuildRun is created and moved pending -> running ->
        succeeded | failed. The artifact is published only after the build
        (and, on a cache miss, the cache store) fully succeeded.

        Args:
            event: Trigger event.
            cancel_token: Set to cancel the build; the environment is
                still torn down.

        Returns:
            Succeeded result with the artifact reference, or Failed result
            with reason and diagnostic.

        Raises:
            InvalidTriggerError: If the event is not a release tag push. No
                run is created in that case.
        """
        version = validate_trigger(event, self.definition.tag_pattern)
        event = replace(event, ref=version.to_tag())

        run_id = self._create_run(event)
        logger.info(
            "Accepted %s at %s as build run %d",
            event.ref,
            event.commit_hash[:12],
            run_id,
        )
        self._update_run(run_id, lambda run: run.mark_running())

        cache_key: str | None = None
        outcome: BuildOutcome | None = None
        try:
            cache_key, _ = compute_cache_key_from_definition(
                self.definition, self.definition_root
            )
            key = cache_key
            self._update_run(run_id, lambda run: setattr(run, "cache_key", key))

            entry = self.cache_store.lookup(cache_key)
            outcome = self._run_build(run_id, event, cache_key, entry, cancel_token)

            if outcome.snapshot is not None:
                self.cache_store.store(cache_key, outcome.snapshot)

            artifact = replace(outcome.artifact, release=event.ref)
            ref = self.sink.publish(
                artifact,
                run_id=run_id,
                cache_key=cache_key,
                metadata={
                    "pipeline": self.definition.name,
                    "prerelease": version.is_prerelease,
                },
            )

        except PipelineError as e:
            diagnostic = (
                e.diagnostic if isinstance(e, BuildCommandFailedError) else str(e)
            )
            logger.error("Build run %d failed (%s): %s", run_id, e.code, e)
            self._fail_run(run_id, e.code, diagnostic, outcome)
            return BuildRunResult.failure(
                run_id,
                e.reason,
                diagnostic,
                error_code=e.code,
                cache_key=cache_key,
                cache_status=outcome.cache_status if outcome else None,
            )
        except Exception as e:
            logger.exception("Build run %d failed unexpectedly", run_id)
            diagnostic = f"{type(e).__name__}: {e}"
            self._fail_run(
                run_id, FailureReason.INTERNAL_ERROR.value, diagnostic, outcome
            )
            return BuildRunResult.failure(
                run_id,
                FailureReason.INTERNAL_ERROR,
                diagnostic,
                cache_key=cache_key,
                cache_status=outcome.cache_status if outcome else None,
            )

        def _succeed(run: BuildRun) -> None:
            run.cache_status = outcome.cache_status.value
            run.mark_succeeded(ref.name, ref.url, ref.sha256)

        self._update_run(run_id, _succeed)
        logger.info("Build run %d succeeded: %s", run_id, ref.url)
        return BuildRunResult.success(run_id, ref, cache_key, outcome.cache_status)

    def submit_many(self, events: Iterable[TriggerEvent]) -> list[BuildRunResult]:
        """Run several trigger events concurrently, one BuildRun each.

        Invalid triggers are reported as failed results (without a run)
        instead of aborting the batch.

        Args:
            events: Trigger events.

        Returns:
            Results in the order of the events.
        """
        with ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_builds,
            thread_name_prefix="relpipe-run",
        ) as pool:
            futures = [pool.submit(self._submit_or_reject, event) for event in events]
            return [future.result() for future in futures]

    def _submit_or_reject(self, event: TriggerEvent) -> BuildRunResult:
        try:
            return self.submit(event)
        except InvalidTriggerError as e:
            logger.warning("Rejected trigger %s: %s", event.ref, e)
            return BuildRunResult.failure(None, e.reason, str(e), error_code=e.code)

    def _run_build(
        self,
        run_id: int,
        event: TriggerEvent,
        cache_key: str,
        entry: CacheEntry | None,
        cancel_token: threading.Event | None,
    ) -> BuildOutcome:
        """Run the executor, retrying provisioning failures with backoff."""
        stop = stop_after_attempt(self.settings.provision_max_attempts)
        if cancel_token is not None:
            stop = stop | stop_when_event_set(cancel_token)

        retrying = Retrying(
            stop=stop,
            wait=wait_exponential(
                multiplier=self.settings.provision_backoff_base,
                max=self.settings.provision_backoff_cap,
            ),
            retry=retry_if_exception_type(ProvisioningFailedError),
            before_sleep=_log_retry,
            reraise=True,
        )

        for attempt in retrying:
            with attempt:
                attempt_no = attempt.retry_state.attempt_number
                self._update_run(
                    run_id, lambda run: setattr(run, "provision_attempts", attempt_no)
                )
                return self.executor.run(
                    event.commit_hash, cache_key, entry, cancel_token=cancel_token
                )

        # Retrying with reraise=True either returns or raises above
        raise AssertionError("unreachable")

    def _create_run(self, event: TriggerEvent) -> int:
        with get_session(self.session_factory) as session:
            run = BuildRun(
                ref=event.ref,
                commit_hash=event.commit_hash,
                triggered_at=event.timestamp,
                status=BuildStatus.PENDING.value,
                provision_attempts=0,
            )
            session.add(run)
            session.flush()
            return run.id

    def _update_run(self, run_id: int, update: Callable[[BuildRun], object]) -> None:
        with get_session(self.session_factory) as session:
            run = session.get(BuildRun, run_id)
            if run is None:
                raise RuntimeError(f"Build run {run_id} disappeared")
            update(run)

    def _fail_run(
        self,
        run_id: int,
        error_type: str,
        message: str,
        outcome: BuildOutcome | None,
    ) -> None:
        def _fail(run: BuildRun) -> None:
            if outcome is not None:
                run.cache_status = outcome.cache_status.value
            run.mark_failed(error_type=error_type, message=message)

        self._update_run(run_id, _fail)


def create_checkout(definition: PipelineDefinition, root: Path) -> SourceCheckout:
    """Create the source checkout adapter declared by a definition."""
    source_path = root / definition.source_path
    if definition.source_type == "directory":
        return DirectoryCheckout(source_path)
    return GitArchiveCheckout(source_path)


def create_pipeline_engine(
    settings: Settings | None = None,
    pipeline_file: Path | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> PipelineEngine:
    """Create a PipelineEngine from settings and a pipeline definition file.

    Args:
        settings: Application settings.
        pipeline_file: Pipeline definition; defaults to settings.pipeline_file.
        session_factory: Session factory; created from settings.db_url if None.

    Returns:
        Configured PipelineEngine.
    """
    if settings is None:
        settings = get_settings()
    if pipeline_file is None:
        pipeline_file = settings.pipeline_file

    definition = load_pipeline_definition(pipeline_file)
    root = Path(pipeline_file).resolve().parent

    if session_factory is None:
        session_factory = open_session_factory(settings.db_url)

    env_override = dict(definition.environment)
    env_override["RELPIPE_DEFINITION_ROOT"] = str(root)

    executor = BuildExecutor(
        provisioner=CommandProvisioner(
            definition.provision_command,
            timeout=settings.provision_timeout,
            env_override=env_override,
        ),
        checkout=create_checkout(definition, root),
        build_command=definition.build_command,
        artifact_path=definition.artifact_path,
        artifact_name=definition.effective_artifact_name,
        timeout=definition.build_timeout or settings.build_timeout,
        tmp_dir=settings.tmp_dir,
        env_override=env_override,
        output_tail_lines=settings.output_tail_lines,
    )

    return PipelineEngine(
        cache_store=create_cache_store(
            settings.cache_dir, hot_entries=settings.hot_cache_entries
        ),
        executor=executor,
        sink=ArtifactSink(LocalStorageBackend(settings.artifacts_dir), session_factory),
        definition=definition,
        definition_root=root,
        session_factory=session_factory,
        settings=settings,
    )


__all__ = [
    "PipelineEngine",
    "create_checkout",
    "create_pipeline_engine",
]
