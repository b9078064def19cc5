"""Blocking detector thresholds and indicators."""

import json

from blocking import BlockingDetector
from conftest import FILLER, html_page, json_ld

DETAIL = "https://www.careerbuilder.com/job/J3CLOUD001"
SRE_POSTING = {"@type": "JobPosting", "title": "SRE", "hiringOrganization": {"name": "Cloudflare"}}


def test_challenge_title():
    verdict = BlockingDetector().classify(
        "<html><head><title>Just a moment...</title></head><body>" + FILLER + "</body></html>"
    )
    assert verdict.blocked
    assert verdict.indicator == "title:just a moment"


def test_challenge_text_in_body():
    verdict = BlockingDetector().classify(
        "<html><body><h2>Checking your browser before accessing the site</h2>" + FILLER + "</body></html>"
    )
    assert verdict
    assert verdict.indicator == "body:checking your browser"


def test_short_body_is_blocked():
    body = "<html><body>" + "x" * 25 + "</body></html>"
    assert len(body) < 512
    verdict = BlockingDetector().classify(body)
    assert verdict.blocked
    assert verdict.indicator.startswith("short-body:")


def test_large_listing_passes():
    cards = "".join(
        f'<li class="job-listing-item"><a href="/job/J3LISTING{i:02d}">Warehouse Associate {i}</a></li>'
        for i in range(60)
    )
    body = f"<html><head><title>Warehouse Jobs</title></head><body><ul>{cards}</ul></body></html>"
    assert len(body) > 5000
    assert not BlockingDetector().classify(body).blocked


def test_scripts_are_not_visible_text():
    body = "<html><body><script>loadCaptcha()</script>" + FILLER + "</body></html>"
    assert not BlockingDetector().classify(body).blocked


def test_json_judged_by_message_fields():
    detector = BlockingDetector()
    assert detector.classify(json.dumps({"data": {"results": []}})).blocked is False
    verdict = detector.classify(json.dumps({"error": {"message": "Access Denied"}}))
    assert verdict.blocked
    assert verdict.indicator == "json:access denied"


def test_inspect_uses_page_title():
    result = html_page("https://www.careerbuilder.com/jobs", "<p>listing</p>", title="Attention Required! | Cloudflare")
    assert BlockingDetector().inspect(result).blocked


def test_custom_threshold():
    body = "<html><body><p>" + "ok " * 100 + "</p></body></html>"
    assert BlockingDetector(min_body_bytes=100).classify(body).blocked is False
    assert BlockingDetector(min_body_bytes=1000).classify(body).blocked is True


def test_job_posting_for_indicator_named_employer_passes():
    result = html_page(DETAIL, f"<h1>SRE</h1><div class='company'>Cloudflare</div>{json_ld(SRE_POSTING)}")
    assert BlockingDetector().inspect(result).blocked is False


def test_security_check_in_listing_text_passes():
    card = (
        "<ul><li class='job-card'><a href='/job/J3GUARD0001'>Security Officer</a>"
        "<p>Candidates must pass a background and security check.</p></li></ul>"
    )
    assert BlockingDetector().classify(f"<html><body>{card}{FILLER}</body></html>").blocked is False


def test_challenge_title_wins_over_job_content():
    result = html_page(DETAIL, json_ld(SRE_POSTING), title="Just a moment...")
    assert BlockingDetector().inspect(result).indicator == "title:just a moment"
