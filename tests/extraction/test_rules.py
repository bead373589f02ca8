"""Tests for the rule-based extractor."""

import re

import pytest

from rolodojo.extraction import (
    RELATIONSHIP_KEY,
    RULE_CONFIDENCE,
    Extraction,
    KeyValuePair,
    Rule,
    RuleExtractor,
    is_question,
)
from rolodojo.extraction.rules import Capture


@pytest.fixture
def extractor() -> RuleExtractor:
    return RuleExtractor()


class TestStatementForms:
    """Each supported sentence shape produces the expected triple."""

    @pytest.mark.parametrize(
        "text, subject, uri, key, value",
        [
            ("Joe's coffee is Espresso", "Joe", "dojo.con.joe", "coffee", "Espresso"),
            ("Joe’s coffee is Espresso.", "Joe", "dojo.con.joe", "coffee", "Espresso"),
            ("Joe lives at 12 Main St", "Joe", "dojo.con.joe", "address", "12 Main St"),
            ("Address for Joe is 12 Main St", "Joe", "dojo.con.joe", "address", "12 Main St"),
            ("Joe coffee is Espresso", "Joe", "dojo.con.joe", "coffee", "Espresso"),
            ("Gate code for Railroad is 1234", "Railroad", "dojo.con.railroad", "gate_code", "1234"),
            ("Set Joe's coffee to Espresso", "Joe", "dojo.con.joe", "coffee", "Espresso"),
            ("Remember Joe's coffee is Espresso", "Joe", "dojo.con.joe", "coffee", "Espresso"),
            ("Joe: coffee = Espresso", "Joe", "dojo.con.joe", "coffee", "Espresso"),
        ],
    )
    def test_extracts_triple(
        self, extractor: RuleExtractor, text: str, subject: str, uri: str, key: str, value: str
    ):
        result = extractor.extract(text)

        assert result.is_complete
        assert result.subject_name == subject
        assert str(result.subject_uri) == uri
        assert result.attribute_key == key
        assert result.attribute_value == value
        assert result.confidence == RULE_CONFIDENCE
        assert result.is_question is False

    def test_multi_word_key_is_normalized(self, extractor: RuleExtractor):
        result = extractor.extract("Jane Doe's favorite color is Blue")
        assert result.subject_name == "Jane Doe"
        assert str(result.subject_uri) == "dojo.con.jane_doe"
        assert result.attribute_key == "favorite_color"

    def test_subject_namespace_is_inferred(self, extractor: RuleExtractor):
        result = extractor.extract("Gate code for Railroad Office is 1234")
        assert str(result.subject_uri) == "dojo.ent.railroad_office"

    def test_uri_subject_is_kept_verbatim(self, extractor: RuleExtractor):
        result = extractor.extract("dojo.ent.railroad: gate_code = 1234")
        assert str(result.subject_uri) == "dojo.ent.railroad"
        assert result.attribute_key == "gate_code"


class TestRelationships:
    """Relationship sentences map to the relationship_to_user key."""

    def test_self_form(self, extractor: RuleExtractor):
        result = extractor.extract("My girlfriend's name is Bridget Hale")
        assert result.subject_name == "Bridget Hale"
        assert str(result.subject_uri) == "dojo.con.bridget_hale"
        assert result.attribute_key == RELATIONSHIP_KEY
        assert result.attribute_value == "girlfriend"

    def test_inverse_form(self, extractor: RuleExtractor):
        result = extractor.extract("Bridget Hale is my girlfriend")
        assert result.subject_name == "Bridget Hale"
        assert result.attribute_key == RELATIONSHIP_KEY
        assert result.attribute_value == "girlfriend"

    def test_accented_term_is_folded(self, extractor: RuleExtractor):
        result = extractor.extract("Anna is my fiancée")
        assert result.attribute_key == RELATIONSHIP_KEY
        assert result.attribute_value == "fiancee"


class TestDeferrals:
    """Guards push ambiguous sentences to later rules or to no extraction."""

    def test_self_introduction_is_not_extracted(self, extractor: RuleExtractor):
        result = extractor.extract("My name is Scott")
        assert not result.is_complete
        assert result.confidence == 0.0

    def test_name_value_with_second_clause_is_rejected(self, extractor: RuleExtractor):
        result = extractor.extract("Her name is Scott and I live at 5 Elm")
        assert result.attribute_key != "name"

    def test_for_connector_prefers_for_rule(self, extractor: RuleExtractor):
        result = extractor.extract("Door code for Cabin is 42")
        assert result.subject_name == "Cabin"
        assert result.attribute_key == "door_code"

    def test_lowercase_single_token_is_not_a_partner(self, extractor: RuleExtractor):
        result = extractor.extract("x is my wife")
        assert result.attribute_key != RELATIONSHIP_KEY


class TestNoExtraction:
    """Unrecognized text yields an empty, zero-confidence extraction."""

    @pytest.mark.parametrize("text", ["hello there", "", "   ", "!!!", "Bob is my friend"])
    def test_empty_result(self, extractor: RuleExtractor, text: str):
        result = extractor.extract(text)
        assert result == Extraction(original_text=text.strip(), is_question=False)
        assert result.confidence == 0.0

    def test_never_raises_on_odd_input(self, extractor: RuleExtractor):
        for text in ["'s is", "::=", "is is is", "’s  is  "]:
            extractor.extract(text)

    def test_question_has_no_triple(self, extractor: RuleExtractor):
        result = extractor.extract("What is Joe's coffee?")
        assert result.is_question is True
        assert not result.is_complete


class TestQuestionClassification:
    @pytest.mark.parametrize(
        "text",
        [
            "What is Joe's coffee?",
            "who is Joe",
            "Where's Joe",
            "How are you",
            "Tell me about Joe",
            "what do you know about Joe",
            "Joe's coffee is Espresso?",
        ],
    )
    def test_questions(self, text: str):
        assert is_question(text) is True

    @pytest.mark.parametrize("text", ["Joe's coffee is Espresso", "Whatever happened", "Joe is here"])
    def test_statements(self, text: str):
        assert is_question(text) is False


class TestRuleTable:
    """The rule table is ordered and first accepted match wins."""

    def test_first_matching_rule_wins(self):
        first = Rule(
            "first",
            re.compile(r"^(\w+) (\w+) (\w+)$"),
            lambda m: Capture(m.group(1), m.group(2), m.group(3)),
        )
        second = Rule(
            "second",
            re.compile(r"^(\w+) (\w+) (\w+)$"),
            lambda m: Capture(m.group(3), m.group(2), m.group(1)),
        )
        result = RuleExtractor(rules=(first, second)).extract("Joe coffee Espresso")
        assert result.subject_name == "Joe"

    def test_guard_rejection_falls_through(self):
        rejected = Rule(
            "rejected",
            re.compile(r"^(\w+) (\w+) (\w+)$"),
            lambda m: Capture(m.group(1), m.group(2), m.group(3)),
            guards=(lambda capture: True,),
        )
        fallback = Rule(
            "fallback",
            re.compile(r"^(\w+) (\w+) (\w+)$"),
            lambda m: Capture(m.group(3), m.group(2), m.group(1)),
        )
        result = RuleExtractor(rules=(rejected, fallback)).extract("Joe coffee Espresso")
        assert result.subject_name == "Espresso"

    def test_unusable_subject_falls_through(self):
        bad_subject = Rule(
            "bad_subject",
            re.compile(r"^(.+) (\w+) (\w+)$"),
            lambda m: Capture("!!!", m.group(2), m.group(3)),
        )
        result = RuleExtractor(rules=(bad_subject,)).extract("Joe coffee Espresso")
        assert not result.is_complete


class TestExtractAllPairs:
    def test_finds_colon_and_is_pairs(self, extractor: RuleExtractor):
        pairs = extractor.extract_all_pairs("name: Joe, city is Tokyo; it is late")
        assert KeyValuePair("name", "Joe") in pairs
        assert KeyValuePair("city", "Tokyo") in pairs
        assert all(pair.key != "it" for pair in pairs)

    def test_no_pairs(self, extractor: RuleExtractor):
        assert extractor.extract_all_pairs("nothing to see here") == []
