"""
Iteration controller.

Drives the agent one feature at a time:

    selecting   first pending/in-progress feature in document order
    invoking    one agent session with the configured deadline
    validating  reload the PRD and diff it against the pre-iteration snapshot
    recording   append a record, apply retry policy, run stuck detection,
                then persist or restore the PRD

The PRD on disk stays the single authoritative copy: an iteration that
fails for any reason gets the pre-iteration bytes put back before the next
attempt, and only a validated snapshot is ever kept.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ralph import notifications
from ralph.agents.claude import AgentOutcome, OutcomeKind
from ralph.lib.config import RunConfig
from ralph.lib.constants import (
    EXIT_BLOCKED,
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_MAX_FAILURES,
    EXIT_STOPPED,
    EXIT_STUCK_LOOP,
    EXIT_SUCCESS,
    EXIT_VERIFICATION_FAILED,
    STATUS_BLOCKED,
    STATUS_COMPLETE,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
)
from ralph.lib.diff import diff_documents, validate_change
from ralph.lib.document import DocumentStore, RequirementsDocument, Snapshot
from ralph.lib.errors import (
    ConfigError,
    MaxFailuresExceeded,
    StuckLoopError,
    ValidationError,
    VerificationFailed,
)
from ralph.lib.prompts import build_prompt, load_template
from ralph.lib.validate import SchemaValidationError
from ralph.runner import output
from ralph.runner.cancel import CancelToken
from ralph.runner.progress import ProgressTracker, ensure_progress_file
from ralph.runner.retry import Disposition, RetryPolicy, classify
from ralph.runner.state import ControllerState, LoopFSM
from ralph.runner.stuck import Signature, StuckDetector
from ralph.runner.verify import all_passed, describe_failures, run_verification

logger = logging.getLogger(__name__)


class TerminalState(str, Enum):
    SUCCESS = "success"
    MAX_FAILURES = "max_failures"
    STUCK = "stuck"
    STOPPED = "stopped"
    VERIFICATION_FAILED = "verification_failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"
    CONFIG_ERROR = "config_error"


EXIT_CODES = {
    TerminalState.SUCCESS: EXIT_SUCCESS,
    TerminalState.MAX_FAILURES: EXIT_MAX_FAILURES,
    TerminalState.CONFIG_ERROR: EXIT_CONFIG_ERROR,
    TerminalState.STUCK: EXIT_STUCK_LOOP,
    TerminalState.STOPPED: EXIT_STOPPED,
    TerminalState.VERIFICATION_FAILED: EXIT_VERIFICATION_FAILED,
    TerminalState.BLOCKED: EXIT_BLOCKED,
    TerminalState.CANCELLED: EXIT_CANCELLED,
}


@dataclass
class RunResult:
    state: TerminalState
    iterations: int
    message: str
    summary: str = ""
    error: Optional[Exception] = None
    elapsed: float = 0.0

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.state]

    @property
    def ok(self) -> bool:
        return self.state == TerminalState.SUCCESS


class Controller:
    """
    Owns one run: its ControllerState, FSM, progress log and policies.

    The agent is any object with ClaudeAgent's invoke() signature, which
    keeps the loop testable without a real `claude` binary.
    """

    def __init__(
        self,
        config: RunConfig,
        agent,
        store: Optional[DocumentStore] = None,
        cancel: Optional[CancelToken] = None,
        preflight: Optional[Callable[[RequirementsDocument], None]] = None,
    ):
        self.config = config
        self.agent = agent
        self.store = store or DocumentStore(config.prd_path)
        self.cancel = cancel or CancelToken()
        self.preflight = preflight

        self.state = ControllerState()
        self.fsm = LoopFSM()
        self.tracker = ProgressTracker(config.iteration_log_path, self.state.run_id)
        self.stuck = StuckDetector(config.stuck_window)
        self.policy = RetryPolicy(
            max_failures=config.max_failures,
            cooldown=config.cooldown,
            max_rate_limit_retries=config.max_rate_limit_retries,
            max_feature_errors=config.max_feature_errors,
        )
        self.template: Optional[str] = None
        self._started = 0.0

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        self._started = time.monotonic()
        try:
            doc = self._init()
        except ConfigError as e:
            return self._terminate(TerminalState.CONFIG_ERROR, str(e), e)

        self.fsm.start()
        notifications.notify_start(self.config.webhook_url, doc.project.name)

        while True:
            result = self._iterate()
            if result is not None:
                return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _init(self) -> RequirementsDocument:
        doc = self.store.load()
        if not doc.features:
            raise ConfigError(f"PRD defines no features: {self.store.path}")

        if not self.config.resume_in_progress:
            for feature in doc.features:
                if feature.status == STATUS_IN_PROGRESS:
                    doc = self.store.set_status(feature.id, STATUS_PENDING)
                    logger.info(f"[STATE] Reset {feature.id}: in-progress -> pending")

        self.config.state_dir.mkdir(parents=True, exist_ok=True)
        ensure_progress_file(self.config.progress_path)

        if self.preflight and not self.config.skip_init:
            self.preflight(doc)

        self.template = load_template(self.config.prompt_path)
        logger.info(f"[STATE] Run {self.state.run_id}: {doc.status_counts().describe()}")
        return doc

    def _iterate(self) -> Optional[RunResult]:
        """One selecting -> recording pass. Returns a RunResult once terminal."""
        if self.cancel.cancelled:
            return self._terminate(TerminalState.CANCELLED, self._cancel_message())

        try:
            before = self.store.snapshot()
        except ConfigError as e:
            return self._terminate(TerminalState.CONFIG_ERROR, str(e), e)

        feature = before.document.next_feature()
        if feature is None:
            return self._finish(before.document)

        self.fsm.select()
        self.state.iteration += 1
        n = self.state.iteration
        limit = f"/{self.config.max_iterations}" if self.config.max_iterations else ""
        output.section(f"Iteration {n}{limit}: {feature.id} ({feature.status})")

        prompt = build_prompt(
            self.template,
            before.document,
            feature,
            prd_path=self.config.prd_path,
            progress_path=self.config.progress_path,
            prd_content=before.raw,
            completion_marker=self.config.completion_marker,
        )
        marker = self.config.completion_marker or before.document.completion.marker
        outcome = self.agent.invoke(
            prompt,
            self.config.timeout,
            cancel=self.cancel,
            log_file=self._log_file(n),
            completion_marker=marker,
        )

        if outcome.kind != OutcomeKind.SUCCESS:
            self.fsm.agent_failed()
            return self._record_agent_failure(n, feature.id, before, outcome)

        self.fsm.agent_finished()
        return self._validate_and_record(n, feature.id, before, outcome)

    def _record_agent_failure(self, n: int, feature_id: str, before: Snapshot,
                              outcome: AgentOutcome) -> Optional[RunResult]:
        changed = self._rollback(before)

        if outcome.kind == OutcomeKind.CANCELLED:
            self.tracker.record(n, feature_id, "cancelled", changed,
                                detail=self._cancel_message(), duration=outcome.duration)
            return self._terminate(TerminalState.CANCELLED, self._cancel_message())

        output.warn(str(outcome.error))
        return self._record(n, feature_id, outcome.kind.value, changed,
                            error=outcome.error, duration=outcome.duration)

    def _validate_and_record(self, n: int, feature_id: str, before: Snapshot,
                             outcome: AgentOutcome) -> Optional[RunResult]:
        after = None
        error = None
        changed: list[str] = []
        try:
            after = self.store.snapshot()
        except SchemaValidationError as e:
            error = ValidationError([e.path or "(root)"], feature_id)
        except ConfigError:
            error = ValidationError(["(root)"], feature_id)

        if after is not None:
            changed = diff_documents(before.document, after.document)
            try:
                change = validate_change(before.document, after.document, feature_id)
            except ValidationError as e:
                error = e
        else:
            changed = error.paths

        self.fsm.validated()

        if error is not None:
            self.store.restore(before)
            output.warn(str(error))
            return self._record(n, feature_id, "validation_error", changed,
                                error=error, duration=outcome.duration)

        if change.is_noop:
            output.say(f"No PRD change for {feature_id}")
            return self._record(n, feature_id, "no_op", (), duration=outcome.duration,
                                marker_seen=outcome.marker_seen)

        if change.new_status == STATUS_COMPLETE and self._should_verify_each(after.document):
            failure = self._verify(after.document)
            if failure is not None:
                self.store.restore(before)
                output.warn(str(failure))
                return self._record(n, feature_id, "verification_failed", changed,
                                    error=failure, duration=outcome.duration)

        self.store.commit(after)
        output.say(f"{feature_id}: {change.old_status} -> {change.new_status}")
        return self._record(n, feature_id, "success", changed, new_status=change.new_status,
                            duration=outcome.duration, marker_seen=outcome.marker_seen)

    def _record(
        self,
        n: int,
        feature_id: str,
        outcome: str,
        changed,
        new_status: Optional[str] = None,
        error: Optional[Exception] = None,
        duration: Optional[float] = None,
        marker_seen: bool = False,
    ) -> Optional[RunResult]:
        """Recording phase, then the termination checks."""
        self.tracker.record(n, feature_id, outcome, changed, new_status=new_status,
                            detail=str(error) if error else "", duration=duration)

        try:
            effective = self.policy.apply(self.state, classify(outcome), feature_id, error)
            if effective != Disposition.RATE_LIMITED:
                # pending -> in-progress -> complete touches the same path twice
                result = f"{outcome}->{new_status}" if new_status else outcome
                self.stuck.observe(Signature(feature_id, result, frozenset(changed)))
        except MaxFailuresExceeded as e:
            return self._terminate(TerminalState.MAX_FAILURES, str(e), e)
        except StuckLoopError as e:
            return self._terminate(TerminalState.STUCK, str(e), e)

        if effective == Disposition.RATE_LIMITED:
            if self._at_iteration_limit(n):
                logger.info("Rate limited on the last allowed iteration; skipping cooldown")
            else:
                output.say(f"Rate limited; waiting {self.policy.cooldown:g}s before retrying {feature_id}")
                if self.cancel.sleep(self.policy.cooldown):
                    return self._terminate(TerminalState.CANCELLED, self._cancel_message())
        elif effective == Disposition.FAILURE and self.policy.should_block(self.state, feature_id):
            self._auto_block(n, feature_id)

        if self.cancel.cancelled:
            return self._terminate(TerminalState.CANCELLED, self._cancel_message())

        try:
            doc = self.store.load()
        except ConfigError as e:
            return self._terminate(TerminalState.CONFIG_ERROR, str(e), e)

        if marker_seen and not doc.all_complete:
            logger.info(f"Agent printed the completion marker but features remain "
                        f"({doc.status_counts().describe()})")
        if doc.all_complete:
            return self._finish(doc)

        if self._at_iteration_limit(n):
            return self._terminate(
                TerminalState.STOPPED,
                f"Reached max iterations ({self.config.max_iterations}); "
                f"{doc.status_counts().describe()}",
            )

        self.fsm.next_iteration()
        if effective != Disposition.RATE_LIMITED and self.config.delay:
            if self.cancel.sleep(self.config.delay):
                return self._terminate(TerminalState.CANCELLED, self._cancel_message())
        return None

    def _finish(self, doc: RequirementsDocument) -> RunResult:
        """No selectable feature left: either everything is complete or the rest is blocked."""
        if not doc.all_complete:
            counts = doc.status_counts()
            return self._terminate(
                TerminalState.BLOCKED,
                f"No workable features left: {counts.blocked} blocked ({counts.describe()})",
            )

        if doc.completion.all_verifications_passing and doc.verification.commands:
            output.say("All features complete; running final verification")
            failure = self._verify(doc)
            if failure is not None:
                return self._terminate(TerminalState.VERIFICATION_FAILED, str(failure), failure)

        return self._terminate(
            TerminalState.SUCCESS,
            f"All {len(doc.features)} features complete",
        )

    def _terminate(self, state: TerminalState, message: str,
                   error: Optional[Exception] = None) -> RunResult:
        if self.fsm.can("terminate"):
            self.fsm.terminate()
        self.state.cancelled = state == TerminalState.CANCELLED

        result = RunResult(
            state=state,
            iterations=self.state.iteration,
            message=message,
            summary=self.tracker.summary(self.config.summary_size),
            error=error,
            elapsed=time.monotonic() - self._started if self._started else 0.0,
        )
        log = logger.info if result.ok else logger.warning
        log(f"[STATE] Terminated: {state.value} after {result.iterations} iteration(s): {message}")

        if result.ok:
            notifications.notify_complete(self.config.webhook_url, result.iterations)
        elif state != TerminalState.CONFIG_ERROR:
            notifications.notify_failed(self.config.webhook_url, f"{state.value}: {message}")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _rollback(self, before: Snapshot) -> list[str]:
        """Put back the pre-iteration PRD if the agent left it changed. Returns the changed paths."""
        try:
            raw = self.store.read_raw()
        except ConfigError:
            raw = None
        if raw == before.raw:
            return []

        try:
            changed = diff_documents(before.document, self.store.snapshot().document)
        except ConfigError:
            changed = ["(root)"]
        self.store.restore(before)
        return changed

    def _auto_block(self, n: int, feature_id: str) -> None:
        errors = self.state.feature_errors.pop(feature_id, 0)
        self.store.set_status(feature_id, STATUS_BLOCKED)
        self.state.consecutive_failures = 0
        detail = f"Auto-blocked after {errors} failed iteration(s)"
        self.tracker.record(n, feature_id, "feature_blocked", [f"features[{feature_id}].status"],
                            new_status=STATUS_BLOCKED, detail=detail)
        output.warn(f"Feature '{feature_id}' auto-blocked after {errors} failures")

    def _at_iteration_limit(self, n: int) -> bool:
        return bool(self.config.max_iterations) and n >= self.config.max_iterations

    def _should_verify_each(self, doc: RequirementsDocument) -> bool:
        return doc.verification.run_after_each_feature and bool(doc.verification.commands)

    def _verify(self, doc: RequirementsDocument) -> Optional[VerificationFailed]:
        results = run_verification(doc.verification.commands, self.config.project_dir)
        for r in results:
            output.say(f"  {r.name}: {r.label}")
        if all_passed(results):
            return None
        return VerificationFailed(describe_failures(results))

    def _log_file(self, n: int):
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        return self.config.log_dir / f"{stamp}-iteration-{n}.log"

    def _cancel_message(self) -> str:
        return f"Cancelled ({self.cancel.reason or 'interrupted'})"
