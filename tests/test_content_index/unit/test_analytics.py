"""Unit tests for aggregate label analytics."""

import numpy as np
import pytest

from content_index.analytics import (
    AnalyticsConfig,
    CosineSimilarity,
    JaccardSimilarity,
    build_report,
    compute_centroids,
    cosine_similarity,
    count_fields,
    extract_labels,
    rank_pairs,
    select_similarity,
    top_labels,
    underserved_labels,
)
from content_index.models import LabelCount, PageRecord


@pytest.fixture
def pages() -> list[PageRecord]:
    """Three pages: "ai" on all of them, "blogging" only on the first."""
    return [
        PageRecord(
            url="https://example.com/1",
            source="1.json",
            data={"interests": ["ai", "blogging"], "summary": "x", "links": ["a", "b", "c"]},
        ),
        PageRecord(
            url="https://example.com/2",
            source="2.json",
            data={"interests": [{"interest": "ai", "text": "about ai"}], "links": ["a"]},
        ),
        PageRecord(url="https://example.com/3", source="3.json", data={"interests": ["ai"]}),
    ]


class TestExtractLabels:
    def test_strings_and_objects(self):
        value = ["ai", {"interest": " seo "}, {"label": "travel"}, {"segments": "teens"}]
        assert extract_labels(value, "segments") == ["ai", "seo", "travel", "teens"]

    def test_rejects_serialized_structures(self):
        assert extract_labels(['["ai", "seo"]', '{"a": 1}', "  ", "ok"], "interests") == ["ok"]

    def test_non_list(self):
        assert extract_labels("ai", "interests") == []


class TestCounting:
    def test_count_fields(self, pages):
        counts = count_fields(pages, ignore_fields=["links"])

        assert counts.totals == {"interests": 4}
        assert counts.labels["interests"] == {"ai": 3, "blogging": 1}
        assert counts.label_docs["interests"]["blogging"] == {"1.json"}
        assert counts.label_docs["interests"]["ai"] == {"1.json", "2.json", "3.json"}

    def test_top_and_underserved(self):
        """ai (3) leads the top labels; blogging (1) leads the underserved."""
        counts = [
            LabelCount(label="ai", count=3, percentage=75.0),
            LabelCount(label="blogging", count=1, percentage=25.0),
            LabelCount(label="unused", count=0, percentage=0.0),
        ]

        assert [c.label for c in top_labels(counts, 5)] == ["ai", "blogging", "unused"]
        assert [c.label for c in underserved_labels(counts, 5)] == ["blogging", "ai"]

    def test_frequency_ties_lexical(self):
        counts = [
            LabelCount(label="b", count=2, percentage=50.0),
            LabelCount(label="a", count=2, percentage=50.0),
        ]
        assert [c.label for c in top_labels(counts, 2)] == ["a", "b"]
        assert [c.label for c in underserved_labels(counts, 2)] == ["a", "b"]


class TestSimilarity:
    def test_cosine_self_and_orthogonal(self):
        assert cosine_similarity([0.3, 0.4, 0.5], [0.3, 0.4, 0.5]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_cosine_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_centroids_are_means(self):
        centroids = compute_centroids(
            {"ai": {"d1", "d2"}, "seo": {"d3"}, "orphan": {"missing"}},
            {"d1": [1.0, 0.0], "d2": [0.0, 1.0], "d3": [2.0, 2.0]},
        )
        assert set(centroids) == {"ai", "seo"}
        np.testing.assert_allclose(centroids["ai"], [0.5, 0.5])

    def test_jaccard(self):
        similarity = JaccardSimilarity({"ai": {"1", "2", "3"}, "blogging": {"1"}})
        assert similarity.similarity("ai", "blogging") == pytest.approx(1 / 3)

    def test_select_cosine_with_two_centroids(self):
        similarity = select_similarity(
            {"ai": {"d1"}, "seo": {"d2"}}, {"d1": [1.0, 0.0], "d2": [0.0, 1.0]}
        )
        assert isinstance(similarity, CosineSimilarity)

    def test_select_jaccard_fallback(self):
        """Fewer than two labels with vectors falls back to co-occurrence."""
        similarity = select_similarity({"ai": {"d1"}, "seo": {"d2"}}, {"d1": [1.0, 0.0]})
        assert isinstance(similarity, JaccardSimilarity)
        assert isinstance(select_similarity({"ai": {"d1"}}, None), JaccardSimilarity)


class TestRankPairs:
    def test_similar_and_gap_pairs(self):
        label_docs = {"ai": {"1", "2"}, "ml": {"1", "2"}, "travel": {"2"}, "cooking": {"9"}}
        centroids = {
            "ai": np.array([1.0, 0.0]),
            "ml": np.array([1.0, 0.1]),
            "travel": np.array([0.0, 1.0]),
            "cooking": np.array([-1.0, 0.0]),
        }

        similar, gaps = rank_pairs(
            list(label_docs), label_docs, CosineSimilarity(centroids), limit=2
        )

        assert (similar[0].first, similar[0].second) == ("ai", "ml")
        # cooking never co-occurs with anything, so it cannot form a gap pair
        assert all("cooking" not in (p.first, p.second) for p in gaps)
        assert (gaps[0].first, gaps[0].second) == ("ai", "travel")

    def test_pairs_are_lexically_ordered(self):
        label_docs = {"zeta": {"1"}, "alpha": {"1"}}
        similar, _ = rank_pairs(
            ["zeta", "alpha"], label_docs, JaccardSimilarity(label_docs), limit=5
        )
        assert (similar[0].first, similar[0].second) == ("alpha", "zeta")


class TestBuildReport:
    def test_report_with_vectors(self, pages):
        doc_vectors = {"1.json": [1.0, 0.0], "2.json": [0.0, 1.0], "3.json": [0.0, 1.0]}

        report = build_report(pages, ignore_fields=["links"], doc_vectors=doc_vectors)

        assert report.page_count == 3
        assert [(t.field, t.total) for t in report.page_field_totals] == [("interests", 4)]
        interests = report.fields["interests"]
        assert interests.metric == "cosine"
        assert [(c.label, c.count, c.percentage) for c in interests.label_counts] == [
            ("ai", 3, 75.0),
            ("blogging", 1, 25.0),
        ]
        assert interests.top_labels[0].label == "ai"
        assert interests.underserved_labels[0].label == "blogging"
        assert len(interests.similar_pairs) == 1
        assert interests.gap_pairs[0].first == "ai"
        assert interests.gap_pairs[0].second == "blogging"

    def test_report_without_vectors_uses_jaccard(self, pages):
        report = build_report(pages)

        assert [t.field for t in report.page_field_totals] == ["interests", "links"]
        assert report.fields["interests"].metric == "jaccard"
        assert report.fields["interests"].similar_pairs[0].similarity == pytest.approx(1 / 3)

    def test_limits(self, pages):
        report = build_report(pages, config=AnalyticsConfig(top_k=1, pair_limit=1))
        assert len(report.fields["interests"].top_labels) == 1
        assert len(report.fields["interests"].underserved_labels) == 1

    def test_no_pages(self):
        report = build_report([])
        assert report.page_count == 0
        assert report.fields == {}
