"""Alias table, dedup keys and the page-settling helpers (with a fake page)."""

import pytest

from job_fields import dedup_key, job_did, job_signal, looks_like_job_array, normalize_url
from stealth import STEALTH_ARGS, PageStealth


@pytest.mark.parametrize(
    "raw, fallback, expected",
    [
        ({"did": "J3ABCDEF99", "url": "/job/J3OTHER000"}, None, "id:J3ABCDEF99"),
        ({"identifier": {"value": "12345"}}, None, "id:12345"),
        ({"url": "https://www.careerbuilder.com/job/J3ABCDEF99?ipath=x"}, None, "id:J3ABCDEF99"),
        ({"@id": "https://www.careerbuilder.com/job/J3ABCDEF99"}, None, "id:J3ABCDEF99"),
        ({"url": "https://WWW.Example.com/careers/123/#apply"}, None, "url:https://www.example.com/careers/123"),
        ({}, "https://www.careerbuilder.com/job/J3FALLBACK", "id:J3FALLBACK"),
        ({"title": "No key"}, None, None),
    ],
)
def test_dedup_key(raw, fallback, expected):
    assert dedup_key(raw, fallback) == expected


def test_job_did_and_url_normalization():
    assert job_did("/job/J3Q7XY56LK9PQRS1") == "J3Q7XY56LK9PQRS1"
    assert job_did("https://www.careerbuilder.com/jobs?keywords=x") is None
    assert normalize_url("/jobs/") == "https://www.careerbuilder.com/jobs"


def test_job_signal_and_array_shape():
    signal = job_signal({"jobTitle": "Cook", "employerName": "Diner", "@id": "https://x.test/j/1"})
    assert (signal.has_title, signal.has_company, signal.has_link_or_id) == (True, True, True)
    assert signal.score == 3
    assert job_signal("nope").is_empty

    assert looks_like_job_array([{"title": "Cook"}, {"company": "Diner", "id": 7}])
    assert not looks_like_job_array([{"title": "Cook", "company": "Diner"}])
    assert not looks_like_job_array([{"title": "Cook", "company": "Diner", "id": 1}, "x"])
    assert not looks_like_job_array([])


class FakeButton:
    def __init__(self, visible=True):
        self.visible = visible
        self.clicked = False

    @property
    def first(self):
        return self

    def is_visible(self, timeout=None):
        return self.visible

    def click(self):
        self.clicked = True


class FakePage:
    def __init__(self, contents, button=None):
        self.contents = list(contents)
        self.button = button or FakeButton(visible=False)
        self.waits = []
        self.scripts = []

    def content(self):
        return self.contents.pop(0) if len(self.contents) > 1 else self.contents[0]

    def wait_for_timeout(self, ms):
        self.waits.append(ms)

    def locator(self, selector):
        return self.button

    def evaluate(self, script):
        self.scripts.append(script)


def test_interstitial_clears():
    page = FakePage(["<title>Just a moment...</title>", "<html>jobs</html>"])
    assert PageStealth(interstitial_wait_ms=5).wait_out_interstitial(page) is True
    assert page.waits == [5]


def test_interstitial_never_clears():
    page = FakePage(["Checking your browser before accessing"])
    assert PageStealth(interstitial_rounds=2, interstitial_wait_ms=1).wait_out_interstitial(page) is False
    assert page.waits == [1, 1]


def test_cookie_consent_clicked_when_visible():
    button = FakeButton(visible=True)
    assert PageStealth().accept_cookie_consent(FakePage(["x"], button)) is True
    assert button.clicked
    assert PageStealth().accept_cookie_consent(FakePage(["x"])) is False


def test_scroll_and_launch_args():
    page = FakePage(["x"])
    PageStealth(scroll_steps=3).scroll_for_lazy_load(page)
    assert len(page.scripts) == 4
    assert page.scripts[-1] == "window.scrollTo(0, 0)"

    assert PageStealth().launch_args() == STEALTH_ARGS
    assert PageStealth(use_stealth=False).launch_args() == []
