"""Tests for navigation extraction."""

import pytest

from conftest import make_page
from contentmap.services.errors import AnalysisError
from contentmap.services.navigation import (
    breadcrumb_parent,
    breadcrumb_trail,
    build_site_graph,
    extract_navigation,
    is_ancestor,
)

_NAV = [("/", "Home", "header"), ("/blog", "Blog", "nav"), ("/about", "About", "nav")]
_FOOTER = [("/privacy", "Privacy", "footer"), ("https://twitter.com/example", "Twitter", "footer")]


def _site(n: int = 10, promo_on: int = 2):
    pages = []
    for i in range(n):
        links = list(_NAV) + list(_FOOTER)
        if i < promo_on:
            links.append(("/promo", "Sale!", "nav"))
        links.append((f"/blog/post-{i}", f"Post {i}", "main"))
        pages.append(make_page(f"https://example.com/page-{i}", links=links))
    return pages


def _targets(items):
    return [item.target_pattern for item in items]


class TestPrimaryAndFooter:
    def test_frequent_nav_links_promoted(self):
        nav = extract_navigation(_site())
        assert set(_targets(nav.primary_nav)) == {"/", "/blog", "/about"}
        assert all(item.frequency == 10 for item in nav.primary_nav)

    def test_rare_links_dropped(self):
        assert "/promo" not in _targets(extract_navigation(_site()).primary_nav)

    def test_threshold_boundary_is_inclusive(self):
        # ceil(0.3 * 10) == 3
        assert "/promo" in _targets(extract_navigation(_site(promo_on=3)).primary_nav)

    def test_body_links_never_navigation(self):
        nav = extract_navigation(_site())
        assert not any(t.startswith("/blog/post") for t in _targets(nav.primary_nav))

    def test_footer(self):
        footer = extract_navigation(_site()).footer
        assert _targets(footer) == ["/privacy", "https://twitter.com/example"]
        assert footer[0].label == "Privacy"

    def test_sorted_by_frequency_then_label(self):
        pages = _site()
        pages[0].links.append(pages[0].links[0].model_copy(update={"href": "https://example.com/zzz"}))
        nav = extract_navigation(pages, frequency_threshold=0.1)
        assert _targets(nav.primary_nav)[-2:] == ["/promo", "/zzz"]
        assert nav.primary_nav[0].label == "About"

    def test_each_page_counts_once(self):
        links = [("/blog", "Blog", "header"), ("/blog", "Blog", "nav")]
        pages = [make_page(f"https://example.com/{i}", links=links) for i in range(2)]
        assert extract_navigation(pages).primary_nav[0].frequency == 2

    def test_most_common_label_wins(self):
        pages = [
            make_page("https://example.com/a", links=[("/blog", "Blog", "nav")]),
            make_page("https://example.com/b", links=[("/blog", "Blog", "nav")]),
            make_page("https://example.com/c", links=[("/blog", "Articles", "nav")]),
        ]
        assert extract_navigation(pages).primary_nav[0].label == "Blog"

    def test_zero_pages(self):
        with pytest.raises(AnalysisError):
            extract_navigation([])


class TestBreadcrumbs:
    def _posts(self):
        return [
            make_page(
                f"https://example.com/blog/post-{i}",
                links=[("/", "Home", "breadcrumb"), ("/blog", "Blog", "breadcrumb")],
            )
            for i in range(4)
        ]

    def test_consistent_trail_ancestors(self):
        crumbs = extract_navigation(self._posts()).breadcrumbs
        assert [(c.label, c.target_pattern) for c in crumbs] == [("Blog", "/blog"), ("Home", "/")]

    def test_non_ancestor_crumbs_ignored(self):
        pages = [
            make_page(
                f"https://example.com/blog/post-{i}",
                links=[("/shop", "Shop", "breadcrumb")],
            )
            for i in range(3)
        ]
        assert extract_navigation(pages).breadcrumbs == []

    def test_json_ld_breadcrumb_list(self):
        page = make_page(
            "https://example.com/docs/setup",
            json_ld=[
                {
                    "@type": "BreadcrumbList",
                    "itemListElement": [
                        {"position": 2, "name": "Docs", "item": "https://example.com/docs"},
                        {"position": 1, "name": "Home", "item": {"@id": "https://example.com/"}},
                    ],
                }
            ],
        )
        trail = breadcrumb_trail(page)
        assert [c.label for c in trail] == ["Home", "Docs"]
        assert breadcrumb_parent(page).url == "https://example.com/docs"

    def test_parent_skips_self(self):
        page = make_page(
            "https://example.com/blog/post",
            links=[("/blog", "Blog", "breadcrumb"), ("/blog/post", "Post", "breadcrumb")],
        )
        assert breadcrumb_parent(page).url == "https://example.com/blog"

    def test_is_ancestor(self):
        assert is_ancestor("https://example.com/blog", "https://example.com/blog/post")
        assert is_ancestor("https://example.com/", "https://example.com/blog")
        assert not is_ancestor("https://example.com/blog", "https://example.com/blog")
        assert not is_ancestor("https://example.com/shop", "https://example.com/blog/post")
        assert not is_ancestor("https://other.org/blog", "https://example.com/blog/post")


class TestSiteGraph:
    def _pages(self):
        home = make_page(
            "https://example.com/",
            links=[
                ("/blog", "Blog", "nav"),
                ("/blog/first-post", "First", "main"),
                ("/missing", "Missing", "main"),
            ],
        )
        blog = make_page("https://example.com/blog", links=[("/blog/first-post", "First", "main")])
        post = make_page("https://example.com/blog/first-post", links=[("/", "Home", "header")])
        return home, blog, post

    def test_nodes_carry_path_depth(self):
        home, blog, post = self._pages()
        graph = build_site_graph([home, blog, post])
        assert [(n.id, n.depth) for n in graph.nodes] == [(home.id, 0), (blog.id, 1), (post.id, 2)]

    def test_edges_only_between_stored_pages(self):
        home, blog, post = self._pages()
        graph = build_site_graph([home, blog, post])
        edges = [(e.from_id, e.to_id, e.context, e.confidence) for e in graph.edges]
        assert edges == [
            (home.id, blog.id, "nav", 0.9),
            (home.id, post.id, "main", 0.7),
            (blog.id, post.id, "main", 0.7),
            (post.id, home.id, "header", 0.9),
        ]

    def test_included_in_navigation_artifact(self):
        data = extract_navigation(list(self._pages())).to_json_dict()
        assert len(data["siteGraph"]["nodes"]) == 3
        assert set(data["siteGraph"]["edges"][0]) == {"from", "to", "context", "confidence"}
