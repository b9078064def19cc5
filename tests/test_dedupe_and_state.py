"""Run-wide dedup (in memory and persisted) and quota accounting."""

import json

from conftest import ListSink
from dedupe_store import DedupeStore
from models import JobRecord, Phase
from run_metrics import RunMetrics
from run_state import RunState


def _record(title="Data Engineer"):
    return JobRecord(title=title, company="Acme", url="https://www.careerbuilder.com/job/J3AAAAAA01")


def test_try_claim_true_then_false():
    store = DedupeStore()
    assert store.try_claim("id:J3AAAAAA01") is True
    assert store.try_claim("id:J3AAAAAA01") is False
    assert store.is_claimed("id:J3AAAAAA01")
    assert not store.is_claimed("id:J3BBBBBB02")
    assert len(store) == 1


def test_persisted_keys_survive_restart(tmp_path):
    path = tmp_path / "seen_jobs.jsonl"
    first = DedupeStore(path)
    assert first.try_claim("id:J3AAAAAA01")
    first.record("id:J3AAAAAA01", _record())

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["key"] == "id:J3AAAAAA01"
    assert entry["title"] == "Data Engineer"

    with open(path, "a", encoding="utf-8") as f:
        f.write("not json\n\n")

    second = DedupeStore(path)
    assert second.is_claimed("id:J3AAAAAA01")
    assert second.try_claim("id:J3AAAAAA01") is False
    assert second.try_claim("id:J3BBBBBB02") is True


def test_sink_receives_one_record_per_key():
    sink = ListSink()
    metrics = RunMetrics(site="careerbuilder")
    state = RunState(10, 5, DedupeStore(), sink, metrics)

    assert state.try_emit("id:1", _record("One"))
    assert not state.try_emit("id:1", _record("One again"))
    assert state.try_emit("id:2", _record("Two"))

    assert [r.title for r in sink.records] == ["One", "Two"]
    assert state.jobs_scraped == 2
    assert metrics.get("duplicates") == 1
    assert metrics.get("emitted") == 2


def test_quota_caps_emission():
    sink = ListSink()
    state = RunState(2, 5, DedupeStore(), sink)
    results = [state.try_emit(f"id:{i}", _record(str(i))) for i in range(4)]

    assert results == [True, True, False, False]
    assert state.quota_met
    assert state.remaining == 0
    assert len(sink.records) == 2


def test_sink_failure_keeps_key_claimed():
    metrics = RunMetrics(site="careerbuilder")
    state = RunState(5, 5, DedupeStore(), ListSink(fail=True), metrics)

    assert not state.try_emit("id:1", _record())
    assert state.jobs_scraped == 0
    assert state.dedupe.is_claimed("id:1")
    assert metrics.get("sink_failures") == 1


def test_page_budget_is_per_phase():
    metrics = RunMetrics(site="careerbuilder")
    state = RunState(5, 2, DedupeStore(), ListSink(), metrics)

    assert state.try_start_page(Phase.HTML)
    assert state.try_start_page(Phase.HTML)
    assert not state.try_start_page(Phase.HTML)
    assert state.pages_left(Phase.HTML) == 0
    assert state.try_start_page(Phase.BROWSER)
    assert metrics.get("pages_html") == 2
    assert metrics.get("pages_browser") == 1
