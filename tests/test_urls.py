"""Tests for URL canonicalisation, glob matching and frontier classification."""

import hashlib

import pytest

from contentmap.models.config import CrawlConfig
from contentmap.services.errors import InvalidURLError
from contentmap.services.urls import (
    classify,
    glob_match,
    is_allowed_subdomain,
    normalize,
    root_domain,
    subdomain_of,
    to_id,
)

BASE = "https://example.com/"


class TestNormalize:
    def test_lowercases_scheme_and_host(self):
        assert normalize("HTTPS://Example.COM/About") == "https://example.com/About"

    def test_strips_default_ports(self):
        assert normalize("http://example.com:80/a") == "http://example.com/a"
        assert normalize("https://example.com:443/a") == "https://example.com/a"

    def test_keeps_non_default_port(self):
        assert normalize("https://example.com:8443/a") == "https://example.com:8443/a"

    def test_strips_trailing_slash_except_root(self):
        assert normalize("https://example.com/blog/") == "https://example.com/blog"
        assert normalize("https://example.com") == "https://example.com/"
        assert normalize("https://example.com/") == "https://example.com/"

    def test_drops_fragment(self):
        assert normalize("https://example.com/page#section") == "https://example.com/page"

    def test_sorts_query_parameters_by_key(self):
        assert normalize("https://example.com/s?b=2&a=1") == "https://example.com/s?a=1&b=2"

    def test_query_order_independent(self):
        a = normalize("https://example.com/s?z=9&m=5&a=1")
        b = normalize("https://example.com/s?a=1&z=9&m=5")
        assert a == b

    def test_repeated_keys_keep_relative_order(self):
        assert normalize("https://example.com/s?t=2&a=0&t=1") == "https://example.com/s?a=0&t=2&t=1"

    @pytest.mark.parametrize(
        "url",
        [
            "HTTP://Example.com:80/Path/?b=2&a=1#frag",
            "https://example.com",
            "https://example.com/a/b/c/",
            "https://example.com/search?q=hello+world&page=2",
            "https://[::1]:8080/x",
        ],
    )
    def test_idempotent(self, url):
        once = normalize(url)
        assert normalize(once) == once

    def test_resolves_relative_against_base(self):
        assert normalize("../team", base="https://example.com/about/us") == "https://example.com/team"

    def test_rejects_relative_without_base(self):
        with pytest.raises(InvalidURLError):
            normalize("/just/a/path")


class TestToId:
    def test_deterministic(self):
        assert to_id("https://example.com/a") == to_id("https://example.com/a")

    def test_fixed_length_hex(self):
        page_id = to_id("https://example.com/a")
        assert len(page_id) == 16
        int(page_id, 16)

    def test_same_for_equivalent_spellings(self):
        assert to_id("https://EXAMPLE.com/a/?y=1&x=2") == to_id("https://example.com/a?x=2&y=1")

    def test_distinct_urls_get_distinct_ids(self):
        ids = {to_id(f"https://example.com/page/{i}") for i in range(500)}
        assert len(ids) == 500

    def test_digest_of_normalized_url(self):
        expected = hashlib.sha256(b"https://example.com/").hexdigest()[:16]
        assert to_id("https://EXAMPLE.com") == expected


class TestDomains:
    def test_root_domain(self):
        assert root_domain("blog.example.com") == "example.com"
        assert root_domain("example.com") == "example.com"
        assert root_domain("127.0.0.1") == "127.0.0.1"

    def test_subdomain_of(self):
        assert subdomain_of("https://blog.example.com/x", BASE) == "blog"
        assert subdomain_of("https://example.com/x", BASE) is None
        assert subdomain_of("https://other.org/x", BASE) is None

    def test_empty_allow_list_allows_all(self):
        assert is_allowed_subdomain("https://shop.example.com/", BASE, [])

    def test_short_and_full_forms(self):
        assert is_allowed_subdomain("https://blog.example.com/", BASE, ["blog"])
        assert is_allowed_subdomain("https://blog.example.com/", BASE, ["blog.example.com"])
        assert not is_allowed_subdomain("https://shop.example.com/", BASE, ["blog"])

    def test_bare_domain_always_allowed(self):
        assert is_allowed_subdomain("https://example.com/x", BASE, ["blog"])


class TestGlobMatch:
    def test_single_star_within_segment(self):
        assert glob_match("/admin/users", "/admin/*")
        assert not glob_match("/administrator", "/admin/*")

    def test_trailing_sub_path_is_implicit(self):
        assert glob_match("/admin/users/42", "/admin/*")

    def test_double_star_across_segments(self):
        assert glob_match("/api/v1/users/42", "/api/**")
        assert glob_match("/docs/a/b/c/file", "/docs/**/file")

    def test_question_mark_one_char(self):
        assert glob_match("/p1", "/p?")
        assert not glob_match("/p12", "/p?")
        assert not glob_match("/p/", "/p?/x")

    def test_case_insensitive(self):
        assert glob_match("/Admin/Users", "/admin/*")

    def test_anchored_at_start(self):
        assert not glob_match("/site/admin/users", "/admin/*")

    def test_relative_pattern_matches_at_segment_boundary(self):
        assert glob_match("/private/notes", "private/*")


class TestClassify:
    def test_same_origin_ok(self):
        assert classify("https://example.com/about", BASE, CrawlConfig()) == (True, "ok")

    def test_off_origin(self):
        verdict = classify("https://other.org/", BASE, CrawlConfig())
        assert not verdict.in_frontier
        assert verdict.reason == "off-origin"

    def test_subdomain_needs_follow_subdomains(self):
        assert classify("https://blog.example.com/", BASE, CrawlConfig()).reason == "off-origin"
        config = CrawlConfig(follow_subdomains=True)
        assert classify("https://blog.example.com/", BASE, config).in_frontier

    def test_subdomain_allow_list(self):
        config = CrawlConfig(follow_subdomains=True, allowed_subdomains=["blog"])
        assert classify("https://blog.example.com/", BASE, config).in_frontier
        verdict = classify("https://shop.example.com/", BASE, config)
        assert verdict == (False, "subdomain-not-allowed")

    def test_excluded_path(self):
        config = CrawlConfig(exclude_paths=["/admin/*"])
        assert classify("https://example.com/admin/login", BASE, config) == (False, "excluded-path")

    def test_exclude_and_include_substrings(self):
        config = CrawlConfig(exclude=["print="], include=["/docs"])
        assert classify("https://example.com/docs/a?print=1", BASE, config).reason == "excluded-pattern"
        assert classify("https://example.com/blog/a", BASE, config).reason == "not-included"
        assert classify("https://example.com/docs/a", BASE, config).in_frontier

    def test_static_assets_skipped(self):
        assert classify("https://example.com/logo.png", BASE, CrawlConfig()).reason == "non-html"

    def test_non_http_scheme(self):
        assert classify("ftp://example.com/file", BASE, CrawlConfig()).reason == "scheme"
