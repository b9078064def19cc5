"""Normalizer: sentinels, keys, location/salary/job type handling and description cleaning."""

import pytest

from models import NOT_SPECIFIED, JobRecord
from normalizer import (
    Normalizer,
    clean_description,
    format_salary,
    normalize_job_type,
    normalize_location,
    normalize_salary,
)


@pytest.fixture
def normalizer():
    return Normalizer()


def test_missing_fields_become_sentinel(normalizer):
    job = normalizer.normalize({"title": "Data Engineer", "url": "/job/J3Q7XY56LK9PQRS1"}, "api")

    assert job is not None
    assert job.key == "id:J3Q7XY56LK9PQRS1"
    record = job.record
    assert record.title == "Data Engineer"
    assert record.url == "https://www.careerbuilder.com/job/J3Q7XY56LK9PQRS1"
    for field in ("company", "location", "date_posted", "salary", "job_type",
                  "description_html", "description_text"):
        assert getattr(record, field) == NOT_SPECIFIED
    assert record.source == "api"
    assert record.scraped_at


def test_record_never_holds_blank_values():
    record = JobRecord(title="  ", company=None, location="")
    assert record.title == NOT_SPECIFIED
    assert record.company == NOT_SPECIFIED
    assert record.location == NOT_SPECIFIED


def test_explicit_id_wins_over_url(normalizer):
    job = normalizer.normalize(
        {"jobId": "abc-123", "title": "Nurse", "url": "https://www.careerbuilder.com/job/J3ZZZZZZZZ"},
        "api",
    )
    assert job.key == "id:abc-123"


def test_fallback_url_supplies_key_and_url(normalizer):
    job = normalizer.normalize(
        {"title": "Welder", "hiringOrganization": {"name": "Steel Co"}},
        "html-json-ld",
        fallback_url="https://www.careerbuilder.com/job/J3WELDER99",
    )
    assert job.key == "id:J3WELDER99"
    assert job.record.url == "https://www.careerbuilder.com/job/J3WELDER99"
    assert job.record.company == "Steel Co"


@pytest.mark.parametrize(
    "raw",
    [
        {"url": "https://www.careerbuilder.com/job/J3Q7XY56LK9PQRS1"},
        {"title": "No key at all"},
        "not a dict",
        None,
    ],
)
def test_rejects_unusable_candidates(normalizer, raw):
    assert normalizer.normalize(raw, "api") is None


def test_structured_location_from_json_ld():
    raw = {
        "jobLocation": {
            "@type": "Place",
            "address": {"addressLocality": "Austin", "addressRegion": "TX", "addressCountry": "US"},
        }
    }
    assert normalize_location(raw) == "Austin, TX, US"


def test_flat_location_and_remote():
    assert normalize_location({"location": "  Denver,   CO "}) == "Denver, CO"
    assert normalize_location({"jobLocationType": "TELECOMMUTE"}) == "Remote"
    assert normalize_location({}) is None


def test_json_ld_salary_range():
    salary = {
        "@type": "MonetaryAmount",
        "currency": "USD",
        "value": {"@type": "QuantitativeValue", "minValue": 80000, "maxValue": 120000, "unitText": "YEAR"},
    }
    assert normalize_salary(salary) == "$80,000 - $120,000 a year"


def test_salary_formats():
    assert format_salary("USD", 25, 25, "HOUR") == "$25 an hour"
    assert format_salary(None, None, None, None) is None
    assert normalize_salary("  $60k - $70k  ") == "$60k - $70k"
    assert normalize_salary({"min": "50,000", "max": "65,000", "period": "yearly", "currency": "USD"}) == (
        "$50,000 - $65,000 a year"
    )


def test_job_type_normalization():
    assert normalize_job_type(["FULL_TIME", "CONTRACTOR", "FULL_TIME"]) == "Full-time, Contract"
    assert normalize_job_type("Part Time") == "Part-time"
    assert normalize_job_type(None) is None


def test_full_json_ld_posting(normalizer):
    posting = {
        "@context": "https://schema.org",
        "@type": "JobPosting",
        "title": "Registered Nurse - ICU",
        "hiringOrganization": {"@type": "Organization", "name": "Mercy Health"},
        "datePosted": "2024-05-01",
        "employmentType": "FULL_TIME",
        "description": "&lt;p&gt;Care for patients.&lt;/p&gt;",
        "identifier": {"@type": "PropertyValue", "name": "CareerBuilder", "value": "J3NURSE123"},
        "jobLocation": {"address": {"addressLocality": "Columbus", "addressRegion": "OH"}},
    }
    job = normalizer.normalize(posting, "html-json-ld")

    assert job.key == "id:J3NURSE123"
    assert job.record.company == "Mercy Health"
    assert job.record.location == "Columbus, OH"
    assert job.record.job_type == "Full-time"
    assert job.record.description_text == "Care for patients."
    assert job.record.raw == posting


class TestCleanDescription:
    def test_strips_scripts_junk_and_links(self):
        raw = (
            "<p>Great role on a small team.</p>"
            "<script>alert(1)</script>"
            "<div class='social-share'>Share on LinkedIn</div>"
            "<p>Apply now</p>"
            "<!-- tracking -->"
            "<p>See <a href='/benefits'>our benefits</a></p>"
        )
        html, text = clean_description(raw)

        assert "<script" not in html
        assert "social-share" not in html
        assert "tracking" not in html
        assert "<a" not in html
        assert "Great role on a small team." in text
        assert "See our benefits" in text
        assert "Apply now" not in text
        assert "Share on LinkedIn" not in text

    def test_unescapes_entity_encoded_markup(self):
        html, text = clean_description("&lt;ul&gt;&lt;li&gt;Python&lt;/li&gt;&lt;li&gt;SQL&lt;/li&gt;&lt;/ul&gt;")
        assert "<li>" in html
        assert text.splitlines()[0] == "Python"
        assert "SQL" in text

    def test_collapses_blank_lines(self):
        _, text = clean_description("<p>One</p><div></div><p></p><p>Two</p>")
        assert text.startswith("One")
        assert text.endswith("Two")
        assert "\n\n\n" not in text

    def test_empty_input(self):
        assert clean_description("") == ("", "")
        assert clean_description(None) == ("", "")
