"""
Tests for studyflow.procedures.similarity — text similarity metrics.
"""

import math

import pytest

from studyflow.procedures.similarity import (
    char_ngrams,
    combined_similarity,
    jaccard_similarity,
    levenshtein_similarity,
    ngram_cosine_similarity,
    normalize_text,
    tokenize,
)


class TestNormalize:

    def test_lower_and_punctuation(self):
        assert normalize_text("  HbA1c,  (Fasting)!  ") == "hba1c fasting"

    def test_tokenize_drops_stopwords(self):
        assert tokenize("Change of the HbA1c") == ["change", "hba1c"]

    def test_char_ngrams(self):
        assert char_ngrams("abc") == {"ab": 1, "bc": 1}
        assert char_ngrams("a") == {"a": 1}
        assert char_ngrams("") == {}


class TestMetrics:

    def test_jaccard(self):
        assert jaccard_similarity("glycated hemglobin", "glycated hemoglobin") == pytest.approx(1 / 3)
        assert jaccard_similarity("", "") == 1.0
        assert jaccard_similarity("abc", "") == 0.0

    def test_cosine(self):
        value = ngram_cosine_similarity("glycated hemglobin", "glycated hemoglobin")
        assert value == pytest.approx(18 / math.sqrt(380))

    def test_cosine_identical(self):
        assert ngram_cosine_similarity("vital signs", "Vital Signs") == pytest.approx(1.0)

    def test_levenshtein(self):
        assert levenshtein_similarity("glycated hemglobin", "glycated hemoglobin") == pytest.approx(18 / 19)
        assert levenshtein_similarity("", "") == 1.0

    @pytest.mark.parametrize("a,b", [
        ("ECG", "electrocardiogram"),
        ("blood pressure", "pressure of blood"),
        ("", "x"),
    ])
    def test_in_unit_range(self, a, b):
        for fn in (jaccard_similarity, ngram_cosine_similarity, levenshtein_similarity,
                   combined_similarity):
            assert 0.0 <= fn(a, b) <= 1.0 + 1e-9


class TestCombined:

    def test_weighted_blend(self):
        expected = 0.3 * (1 / 3) + 0.4 * (18 / math.sqrt(380)) + 0.3 * (18 / 19)
        assert combined_similarity("glycated hemglobin", "glycated hemoglobin") == pytest.approx(expected)
        assert expected == pytest.approx(0.7536, abs=1e-4)

    def test_custom_weights(self):
        assert combined_similarity("abc", "abc", weights=(1.0, 0.0, 0.0)) == pytest.approx(1.0)
