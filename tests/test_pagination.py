"""Next-page resolution: explicit controls, page-number links and URL synthesis."""

from urllib.parse import parse_qs, urlparse

from pagination import PaginationResolver

LISTING = "https://www.careerbuilder.com/jobs?keywords=python&location=Austin"


def _query(url):
    return parse_qs(urlparse(url).query)


def test_rel_next_link_wins():
    html = '<a rel="next" href="/jobs?keywords=python&page_number=2">Next</a>'
    assert PaginationResolver().resolve(html, LISTING, 1) == (
        "https://www.careerbuilder.com/jobs?keywords=python&page_number=2"
    )


def test_disabled_control_is_skipped():
    html = '<a aria-label="Next page" aria-disabled="true" href="/jobs?page_number=9">Next</a>'
    next_url = PaginationResolver().resolve(html, LISTING, 1)
    assert _query(next_url)["page_number"] == ["2"]


def test_generic_pagination_link_needs_next_text():
    html = '<div class="pagination"><a href="/jobs?page_number=1">1</a><a href="/jobs?page_number=5">Next &raquo;</a></div>'
    assert PaginationResolver().resolve(html, LISTING, 1) == "https://www.careerbuilder.com/jobs?page_number=5"


def test_page_number_link():
    html = '<a href="/jobs?page=2">2</a><a href="/jobs?page=3">3</a>'
    assert PaginationResolver().resolve(html, LISTING, 2) == "https://www.careerbuilder.com/jobs?page=3"


def test_synthesis_appends_page_number():
    next_url = PaginationResolver.synthesize(LISTING, 1)
    query = _query(next_url)
    assert query["page_number"] == ["2"]
    assert query["keywords"] == ["python"]


def test_synthesis_increments_existing_param():
    assert _query(PaginationResolver.synthesize(LISTING + "&page_number=4", 4))["page_number"] == ["5"]
    assert _query(PaginationResolver.synthesize("https://example.com/search?p=2", 2))["p"] == ["3"]


def test_synthesis_increments_path_segment():
    assert PaginationResolver.synthesize("https://www.careerbuilder.com/jobs-python/page/3", 3) == (
        "https://www.careerbuilder.com/jobs-python/page/4"
    )


def test_unparseable_url_gives_none():
    assert PaginationResolver().resolve("<p>no controls</p>", "not a url", 1) is None


def test_link_back_to_current_page_gives_none():
    html = '<a rel="next" href="/jobs?keywords=python&location=Austin">Next</a>'
    assert PaginationResolver().resolve(html, LISTING, 1) is None


def test_page_number_three_becomes_four():
    current = "https://www.careerbuilder.com/jobs?keywords=python&page_number=3"
    next_url = PaginationResolver().resolve("<p>results</p>", current, 3)
    assert _query(next_url) == {"keywords": ["python"], "page_number": ["4"]}
