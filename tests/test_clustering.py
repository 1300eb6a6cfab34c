"""Tests for page-type clustering."""

import pytest

from conftest import make_page
from contentmap.models.analysis import PageFeatures
from contentmap.services.clustering import OTHER_TYPE_ID, cluster, common_pattern, infer_name
from contentmap.services.errors import AnalysisError

_POSTS = ["first-post", "second-post", "third-post", "fourth-post", "fifth-post"]
_PRODUCTS = ["red-chair", "blue-table", "green-lamp", "oak-shelf"]


def _site():
    pages = [make_page(f"https://example.com/blog/{slug}", headings=[(1, slug)]) for slug in _POSTS]
    pages += [make_page(f"https://example.com/product/{slug}", headings=[(1, slug)]) for slug in _PRODUCTS]
    pages += [
        make_page("https://example.com/", headings=[(1, "Home")]),
        make_page("https://example.com/about", headings=[(1, "About")]),
    ]
    return pages


class TestCluster:
    def test_blog_and_product_types(self):
        types = cluster(_site())
        by_pattern = {t.url_pattern: t for t in types}
        assert by_pattern["/blog/:slug"].page_count == 5
        assert by_pattern["/product/:slug"].page_count == 4
        assert by_pattern["/blog/:slug"].name == "blog"
        assert by_pattern["/product/:slug"].name == "product"

    def test_ordered_by_size_with_other_last(self):
        types = cluster(_site())
        assert [t.id for t in types] == ["type-1", "type-2", OTHER_TYPE_ID]
        assert types[-1].name == "other"
        assert types[-1].page_count == 2

    def test_every_page_in_exactly_one_type(self):
        pages = _site()
        types = cluster(pages)
        assigned = [pid for t in types for pid in t.page_ids]
        assert sorted(assigned) == sorted(p.id for p in pages)

    def test_confidence_bounds(self):
        for page_type in cluster(_site()):
            assert 0.0 <= page_type.confidence <= 1.0
        assert cluster(_site())[0].confidence == pytest.approx(1.0)

    def test_max_clusters_respected(self):
        pages = [make_page(f"https://example.com/section{i}/page") for i in range(10)]
        types = cluster(pages, max_clusters=3, min_cluster_size=1)
        assert len(types) <= 3
        assert sum(t.page_count for t in types) == 10

    def test_max_clusters_one_folds_everything(self):
        types = cluster(_site(), max_clusters=1)
        assert len(types) == 1
        assert types[0].page_count == len(_POSTS) + len(_PRODUCTS) + 2

    def test_threshold_zero_merges_everything(self):
        types = cluster(_site(), threshold=0.0)
        assert len(types) == 1
        assert types[0].id == "type-1"

    def test_threshold_one_keeps_identical_pages_together(self):
        types = cluster(_site(), threshold=1.0)
        patterns = {t.url_pattern for t in types if t.id != OTHER_TYPE_ID}
        assert patterns == {"/blog/:slug", "/product/:slug"}

    def test_examples_and_rationale(self):
        blog = next(t for t in cluster(_site()) if t.url_pattern == "/blog/:slug")
        assert blog.examples[0] == "https://example.com/blog/first-post"
        assert '"/blog/:slug"' in blog.rationale
        assert blog.dom_signature == "h1"

    def test_single_page(self):
        types = cluster([make_page("https://example.com/")], min_cluster_size=1)
        assert len(types) == 1
        assert types[0].name == "home"

    def test_deterministic(self):
        assert cluster(_site()) == cluster(_site())

    def test_zero_pages(self):
        with pytest.raises(AnalysisError):
            cluster([])


class TestCommonPattern:
    def test_identical(self):
        assert common_pattern(["/blog/:slug", "/blog/:slug"]) == "/blog/:slug"

    def test_same_length_differing_segment(self):
        assert common_pattern(["/docs/intro", "/docs/setup"]) == "/docs/*"

    def test_different_lengths_share_prefix(self):
        assert common_pattern(["/docs/a", "/docs/b/c"]) == "/docs/**"

    def test_nothing_in_common(self):
        assert common_pattern(["/a/b", "/c"]) is None


class TestInferName:
    def test_json_ld_type_wins(self):
        assert infer_name("/blog/:slug", ["BlogPosting"], PageFeatures()) == "blogposting"

    def test_root_is_home(self):
        assert infer_name("/", [], PageFeatures()) == "home"

    def test_last_literal_segment(self):
        assert infer_name("/docs/:slug", [], PageFeatures()) == "docs"

    def test_feature_fallbacks(self):
        assert infer_name(None, [], PageFeatures(has_author=True, has_date=True)) == "article"
        assert infer_name(None, [], PageFeatures(has_price=True)) == "product"
        assert infer_name(None, [], PageFeatures(has_form=True)) == "contact"
        assert infer_name(None, [], PageFeatures()) == "page"
