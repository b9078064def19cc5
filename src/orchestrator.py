"""
Phase orchestrator - runs API -> HTML -> BROWSER -> DONE

Phases report explicit PhaseOutcome values; next_phase() is the whole
escalation policy and has no side effects.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from errors import FatalConfigError
from models import Phase
from run_metrics import RunMetrics
from run_state import RunState

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    SUCCESS = "SUCCESS"
    EXHAUSTED = "EXHAUSTED"
    BLOCKED = "BLOCKED"
    FATAL = "FATAL"


@dataclass(frozen=True)
class PhaseOutcome:
    kind: OutcomeKind
    reason: str = ""
    jobs: int = 0
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, reason: str = "quota met", jobs: int = 0) -> "PhaseOutcome":
        return cls(OutcomeKind.SUCCESS, reason, jobs)

    @classmethod
    def exhausted(cls, reason: str, jobs: int = 0) -> "PhaseOutcome":
        return cls(OutcomeKind.EXHAUSTED, reason, jobs)

    @classmethod
    def blocked(cls, reason: str, jobs: int = 0, error: Optional[BaseException] = None) -> "PhaseOutcome":
        return cls(OutcomeKind.BLOCKED, reason, jobs, error)

    @classmethod
    def fatal(cls, error: BaseException) -> "PhaseOutcome":
        return cls(OutcomeKind.FATAL, str(error), 0, error)

    def __str__(self) -> str:
        return f"{self.kind.value} ({self.reason}, {self.jobs} jobs)"


def next_phase(phase: Phase, outcome: PhaseOutcome, jobs_scraped: int) -> Phase:
    """
    Escalation table.

    FATAL re-raises the outcome's error. HTML that ends exhausted with zero
    jobs in the whole run still gets one BROWSER attempt.
    """
    if outcome.kind is OutcomeKind.FATAL:
        raise outcome.error or FatalConfigError(outcome.reason)

    if phase is Phase.API:
        return Phase.DONE if outcome.kind is OutcomeKind.SUCCESS else Phase.HTML
    if phase is Phase.HTML:
        if outcome.kind is OutcomeKind.SUCCESS:
            return Phase.DONE
        if outcome.kind is OutcomeKind.BLOCKED:
            return Phase.BROWSER
        return Phase.BROWSER if jobs_scraped == 0 else Phase.DONE
    return Phase.DONE


class PhaseRunner(Protocol):
    def run(self, state: RunState) -> PhaseOutcome: ...


@dataclass
class RunSummary:
    jobs_scraped: int
    outcomes: List[tuple] = field(default_factory=list)

    @property
    def phases_run(self) -> List[Phase]:
        return [phase for phase, _ in self.outcomes]

    @property
    def last_outcome(self) -> Optional[PhaseOutcome]:
        return self.outcomes[-1][1] if self.outcomes else None


class PhaseOrchestrator:
    """Drives the phase state machine over one shared RunState."""

    def __init__(self, runners: Dict[Phase, PhaseRunner], metrics: Optional[RunMetrics] = None):
        self.runners = runners
        self.metrics = metrics

    def _run_phase(self, phase: Phase, state: RunState) -> PhaseOutcome:
        runner = self.runners.get(phase)
        if runner is None:
            return PhaseOutcome.exhausted("phase disabled")
        try:
            return runner.run(state)
        except FatalConfigError as exc:
            return PhaseOutcome.fatal(exc)
        except Exception as exc:
            logger.exception("%s phase failed with an unrecoverable error", phase.value)
            return PhaseOutcome.blocked(f"unrecoverable error: {exc}", error=exc)

    def run(self, state: RunState) -> RunSummary:
        summary = RunSummary(jobs_scraped=0)
        phase = Phase.API
        while phase is not Phase.DONE:
            if state.quota_met:
                logger.info("Quota reached before %s phase", phase.value)
                break
            print(f"\n🔎 Phase {phase.value}...")
            logger.info("Entering %s phase (%s/%s jobs)", phase.value, state.jobs_scraped, state.results_wanted)
            before = state.jobs_scraped
            outcome = self._run_phase(phase, state)
            summary.outcomes.append((phase, outcome))

            following = next_phase(phase, outcome, state.jobs_scraped)
            logger.info(
                "%s phase finished: %s; +%s jobs; next=%s",
                phase.value, outcome, state.jobs_scraped - before, following.value,
            )
            if self.metrics is not None:
                self.metrics.record_event(
                    "phase_transition",
                    phase=phase.value,
                    outcome=outcome.kind.value,
                    reason=outcome.reason,
                    jobs_scraped=state.jobs_scraped,
                    next_phase=following.value,
                )
            phase = following

        summary.jobs_scraped = state.jobs_scraped
        return summary
