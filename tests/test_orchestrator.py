"""Phase escalation table and orchestrator behaviour."""

import pytest

from errors import FatalConfigError
from models import JobRecord, Phase
from orchestrator import OutcomeKind, PhaseOrchestrator, PhaseOutcome, next_phase

SUCCESS = PhaseOutcome.success(jobs=5)
EXHAUSTED = PhaseOutcome.exhausted("drained")
BLOCKED = PhaseOutcome.blocked("2 consecutive blocked responses")


@pytest.mark.parametrize(
    "phase, outcome, jobs_scraped, expected",
    [
        (Phase.API, SUCCESS, 5, Phase.DONE),
        (Phase.API, EXHAUSTED, 0, Phase.HTML),
        (Phase.API, EXHAUSTED, 3, Phase.HTML),
        (Phase.API, BLOCKED, 0, Phase.HTML),
        (Phase.HTML, SUCCESS, 5, Phase.DONE),
        (Phase.HTML, BLOCKED, 4, Phase.BROWSER),
        (Phase.HTML, EXHAUSTED, 0, Phase.BROWSER),
        (Phase.HTML, EXHAUSTED, 2, Phase.DONE),
        (Phase.BROWSER, SUCCESS, 5, Phase.DONE),
        (Phase.BROWSER, EXHAUSTED, 0, Phase.DONE),
        (Phase.BROWSER, BLOCKED, 0, Phase.DONE),
    ],
)
def test_next_phase_table(phase, outcome, jobs_scraped, expected):
    assert next_phase(phase, outcome, jobs_scraped) is expected


def test_fatal_outcome_raises():
    error = FatalConfigError("bad template")
    with pytest.raises(FatalConfigError, match="bad template"):
        next_phase(Phase.API, PhaseOutcome.fatal(error), 0)


class StubRunner:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.calls = 0

    def run(self, state):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.outcome


def test_html_failure_escalates_to_browser_once(make_state, metrics):
    api = StubRunner(PhaseOutcome.exhausted("no API endpoint produced jobs"))
    html = StubRunner(error=RuntimeError("parser exploded"))
    browser = StubRunner(PhaseOutcome.exhausted("work queue drained"))
    orchestrator = PhaseOrchestrator({Phase.API: api, Phase.HTML: html, Phase.BROWSER: browser}, metrics)

    summary = orchestrator.run(make_state(results_wanted=5))

    assert (api.calls, html.calls, browser.calls) == (1, 1, 1)
    assert summary.phases_run == [Phase.API, Phase.HTML, Phase.BROWSER]
    assert summary.outcomes[1][1].kind is OutcomeKind.BLOCKED
    assert "parser exploded" in summary.outcomes[1][1].reason
    transitions = [e for e in metrics.events if e["kind"] == "phase_transition"]
    assert [e["next_phase"] for e in transitions] == ["HTML", "BROWSER", "DONE"]


def test_missing_runner_counts_as_exhausted(make_state):
    orchestrator = PhaseOrchestrator({
        Phase.API: StubRunner(PhaseOutcome.exhausted("empty")),
        Phase.HTML: StubRunner(PhaseOutcome.blocked("blocked")),
    })
    summary = orchestrator.run(make_state())

    assert summary.phases_run == [Phase.API, Phase.HTML, Phase.BROWSER]
    assert summary.last_outcome.reason == "phase disabled"


def test_fatal_error_aborts_run(make_state):
    html = StubRunner(PhaseOutcome.success())
    orchestrator = PhaseOrchestrator({
        Phase.API: StubRunner(error=FatalConfigError("no usable session")),
        Phase.HTML: html,
    })
    with pytest.raises(FatalConfigError):
        orchestrator.run(make_state())
    assert html.calls == 0


def test_quota_met_skips_remaining_phases(make_state):
    state = make_state(results_wanted=1)
    state.try_emit("id:1", JobRecord(title="Cook"))
    api = StubRunner(PhaseOutcome.success())

    summary = PhaseOrchestrator({Phase.API: api}).run(state)

    assert api.calls == 0
    assert summary.phases_run == []
    assert summary.jobs_scraped == 1
