"""Unit tests for keyword extraction."""

from agent_platform.services.keyword_service import extract_keywords, query_keywords


def test_ranks_by_frequency():
    text = "Apple apple banana, cherry! apple banana an"

    assert extract_keywords(text) == ["apple", "banana", "cherry"]
    assert extract_keywords(text, max_keywords=2) == ["apple", "banana"]


def test_ties_keep_first_appearance_order():
    assert extract_keywords("zeta alpha mid") == ["zeta", "alpha", "mid"]


def test_short_tokens_and_punctuation_are_dropped():
    assert extract_keywords("a an to, of... is!") == []


def test_cjk_characters_are_kept():
    assert extract_keywords("知识库 知识库 检索") == ["知识库"]


def test_degenerate_inputs():
    assert extract_keywords("") == []
    assert extract_keywords("apple", max_keywords=0) == []


def test_query_keywords_keep_longer_words():
    assert query_keywords("a big cat is here") == ["big", "cat", "here"]
