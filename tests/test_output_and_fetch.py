"""JSONL/Markdown sink, run metrics and the requests-backed fetcher."""

import json

import pytest
import requests

import http_fetcher
from errors import TransportError
from http_fetcher import HttpFetcher, build_headers
from models import JobRecord, SearchQuery
from output_writer import OutputWriter
from proxy_manager import ProxyManager, ProxyManagerSettings, Session
from run_metrics import RunMetrics
from throttle import RequestScheduler


def _job(title, **kwargs):
    return JobRecord(title=title, company="Acme", source="api", **kwargs)


def test_jsonl_append_and_markdown_report(tmp_path):
    writer = OutputWriter(tmp_path / "out" / "jobs.jsonl", tmp_path / "out" / "jobs.md")
    assert writer.append(_job("Data Engineer", url="https://www.careerbuilder.com/job/J3AAAAAA01",
                              salary="$80,000 - $120,000 a year"))
    assert writer.append(_job("Pipe | Welder"))

    lines = (tmp_path / "out" / "jobs.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["title"] for line in lines] == ["Data Engineer", "Pipe | Welder"]
    assert json.loads(lines[1])["location"] == "Not specified"
    assert len(writer) == 2

    path = writer.write_markdown(SearchQuery(keyword="data", location="Austin"), ["API", "HTML"])
    report = path.read_text(encoding="utf-8")
    assert "**Total Jobs:** 2" in report
    assert "**Phases:** API -> HTML" in report
    assert "[Data Engineer](https://www.careerbuilder.com/job/J3AAAAAA01)" in report
    assert "Pipe \\| Welder" in report


def test_markdown_disabled(tmp_path):
    writer = OutputWriter(tmp_path / "jobs.jsonl")
    assert writer.write_markdown(SearchQuery()) is None


def test_append_failure_returns_false(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")
    writer = OutputWriter(blocker / "jobs.jsonl")
    assert writer.append(_job("Cook")) is False
    assert len(writer) == 0


def test_metrics_json(tmp_path):
    metrics = RunMetrics(site="careerbuilder")
    metrics.inc("requests", 3)
    metrics.inc("pages_html", 2)
    metrics.record_event("phase_transition", phase="API", next_phase="HTML")
    metrics.finish()
    path = metrics.write_json(template=str(tmp_path / "metrics_{timestamp}.json"), extra={"phases": ["API"]})

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["counters"]["requests"] == 3
    assert payload["pages"] == {"HTML": 2}
    assert path.name == f"metrics_{metrics.run_id}.json"
    assert payload["events"][0]["next_phase"] == "HTML"
    assert payload["extra"] == {"phases": ["API"]}


def test_build_headers():
    assert build_headers()["Sec-Fetch-Mode"] == "navigate"
    headers = build_headers("json", referer="https://www.careerbuilder.com/jobs")
    assert headers["Accept"].startswith("application/json")
    assert headers["Referer"] == "https://www.careerbuilder.com/jobs"


@pytest.fixture
def fetcher():
    scheduler = RequestScheduler(0.0, 0.0, 0, sleep=lambda s: None)
    return HttpFetcher(scheduler, ProxyManager(ProxyManagerSettings()), timeout=5, metrics=RunMetrics(site="careerbuilder"))


def _response(url, body, status=200, cookies=None):
    response = requests.Response()
    response.status_code = status
    response._content = body.encode("utf-8")
    response.encoding = "utf-8"
    response.url = url
    response.headers["Content-Type"] = "text/html"
    for name, value in (cookies or {}).items():
        response.cookies.set(name, value)
    return response


def test_fetch_merges_cookies(fetcher, monkeypatch):
    seen = {}

    def fake_get(url, **kwargs):
        seen.update(kwargs)
        return _response(url, "<html>ok</html>", cookies={"CBVISITOR": "v1"})

    monkeypatch.setattr(http_fetcher.requests, "get", fake_get)
    session = Session(id="s1")
    session.cookies.set("CBSESSION", "abc")

    result = fetcher.fetch("https://www.careerbuilder.com/jobs", None, session)

    assert result.ok
    assert result.text == "<html>ok</html>"
    assert seen["cookies"] is session.cookies
    assert seen["proxies"] is None
    assert seen["timeout"] == 5
    assert session.cookies.get("CBVISITOR") == "v1"
    assert fetcher.metrics.get("requests") == 1


def test_fetch_maps_transport_errors(fetcher, monkeypatch):
    def fake_get(url, **kwargs):
        raise requests.ConnectionError("connection reset")

    monkeypatch.setattr(http_fetcher.requests, "get", fake_get)
    with pytest.raises(TransportError):
        fetcher.fetch("https://www.careerbuilder.com/jobs", None, Session(id="s1"))
    assert fetcher.metrics.get("transport_errors") == 1


def test_warm_up_runs_once_per_session(fetcher, monkeypatch):
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return _response(url, "<html>home</html>")

    monkeypatch.setattr(http_fetcher.requests, "get", fake_get)
    session = Session(id="s1")
    fetcher.warm_up(session)
    fetcher.warm_up(session)

    assert calls == ["https://www.careerbuilder.com/"]
    assert session.warmed_up
