"""Tests for question classification and answering."""

from pathlib import Path

import pytest

from rolodojo.ledger import LedgerStore, Triple
from rolodojo.query import QueryIntent, QueryResolver, classify, format_key
from rolodojo.query.resolver import UNKNOWN_FORMAT_MESSAGE
from rolodojo.uri import from_name


@pytest.fixture
def store(tmp_path: Path) -> LedgerStore:
    store = LedgerStore(tmp_path / "test_query.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def resolver(store: LedgerStore) -> QueryResolver:
    return QueryResolver(store)


def learn(store: LedgerStore, name: str, key: str, value: str) -> None:
    uri = from_name(name)
    rolo = store.record_summoning(f"{name} {key} is {value}", target_uri=str(uri))
    store.apply_extraction(Triple(uri, name, key, value), rolo.id)


class TestClassify:
    @pytest.mark.parametrize(
        "text, intent, subject, key",
        [
            ("What is Joe's coffee?", QueryIntent.POSSESSIVE, "Joe", "coffee"),
            ("what’s Jane Doe’s favorite color", QueryIntent.POSSESSIVE, "Jane Doe", "favorite color"),
            ("What is the gate code for Railroad?", QueryIntent.FOR_FORM, "Railroad", "gate code"),
            ("Who is Joe?", QueryIntent.PROFILE, "Joe", None),
            ("Where is the Railroad?", QueryIntent.PROFILE, "the Railroad", None),
            ("Tell me about Joe", QueryIntent.PROFILE, "Joe", None),
            ("What do you know about Joe?", QueryIntent.PROFILE, "Joe", None),
            ("What is the wifi password?", QueryIntent.GLOBAL, None, "wifi password"),
            ("How are you?", QueryIntent.UNKNOWN, None, None),
        ],
    )
    def test_intents(self, text, intent, subject, key):
        question = classify(text)
        assert question.intent is intent
        assert question.subject == subject
        assert question.key == key

    def test_format_key(self):
        assert format_key("gate_code") == "Gate Code"
        assert format_key("coffee") == "Coffee"


class TestAttributeQuestions:
    """Questions about one subject's attribute."""

    def test_found(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")

        answer = resolver.answer("What is Joe's coffee?")

        assert answer.message == "Joe's Coffee is Espresso."
        assert answer.subject_uri == "dojo.con.joe"
        assert answer.attribute_key == "coffee"

    def test_for_form(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Railroad", "gate_code", "1234")
        answer = resolver.answer("What is the gate code for Railroad?")
        assert answer.message == "Railroad's Gate Code is 1234."

    def test_fuzzy_key(self, store: LedgerStore, resolver: QueryResolver):
        """A near-miss key falls back to substring matching."""
        learn(store, "Joe", "coffee", "Espresso")
        answer = resolver.answer("What is Joe's coffee order?")
        assert answer.message == "Joe's Coffee is Espresso."

    def test_missing_key_lists_known_facts(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        learn(store, "Joe", "city", "Tokyo")

        answer = resolver.answer("What is Joe's birthday?")

        assert answer.message == "I do not have Birthday for Joe yet. Known facts: City, Coffee."

    def test_known_facts_are_capped(self, store: LedgerStore, resolver: QueryResolver):
        for key in ("a1", "a2", "a3", "a4", "a5", "a6"):
            learn(store, "Joe", key, "x")
        answer = resolver.answer("What is Joe's birthday?")
        assert answer.message.endswith("Known facts: A1, A2, A3, A4, A5.")

    def test_unknown_subject(self, resolver: QueryResolver):
        answer = resolver.answer("What is Zed's coffee?")
        assert answer.message == "I do not know anyone or anything called Zed yet."
        assert answer.subject_uri is None

    def test_subject_without_facts(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        deletion = store.record_summoning("Delete coffee")
        store.soft_delete("dojo.con.joe", "coffee", deletion.id)

        answer = resolver.answer("What is Joe's coffee?")

        assert answer.message == "I know Joe, but I do not have any facts stored yet."


class TestProfileQuestions:
    def test_profile(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        learn(store, "Joe", "city", "Tokyo")

        answer = resolver.answer("Who is Joe?")

        assert answer.intent is QueryIntent.PROFILE
        assert answer.message == "Here is what I know about Joe: City: Tokyo; Coffee: Espresso."
        assert len(answer.attributes) == 2

    def test_profile_by_identifier(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        answer = resolver.answer("Tell me about dojo.con.joe")
        assert "Coffee: Espresso" in answer.message

    def test_unknown(self, resolver: QueryResolver):
        assert resolver.answer("Who is Zed?").message == (
            "I do not know anyone or anything called Zed yet."
        )


class TestGlobalQuestions:
    """Questions that name a key but no subject."""

    def test_single_match(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        assert resolver.answer("What is coffee?").message == "Joe's Coffee is Espresso."

    def test_several_matches(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "city", "Tokyo")
        learn(store, "Ann", "city", "Rome")
        assert resolver.answer("What is city?").message == "City: Ann: Rome; Joe: Tokyo."

    def test_many_matches_are_sampled(self, store: LedgerStore, resolver: QueryResolver):
        for name, city in [("Ann", "Rome"), ("Bob", "Oslo"), ("Cat", "Lima"), ("Dan", "Kyiv")]:
            learn(store, name, "city", city)
        answer = resolver.answer("What is city?")
        assert answer.message == "City: Ann: Rome; Bob: Oslo; Cat: Lima (+1 more)."
        assert len(answer.attributes) == 4

    def test_subject_name_answers_as_profile(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe", "coffee", "Espresso")
        answer = resolver.answer("What is Joe?")
        assert answer.intent is QueryIntent.PROFILE
        assert "Coffee: Espresso" in answer.message

    @pytest.mark.parametrize("text, key", [("What is weather?", "Weather"), ("What is o?", "O")])
    def test_partial_name_is_not_a_subject(
        self, store: LedgerStore, resolver: QueryResolver, text: str, key: str
    ):
        """A key nobody has must not answer about a subject whose name merely contains it."""
        learn(store, "Weatherby", "coffee", "Espresso")
        learn(store, "Joe", "coffee", "Latte")

        answer = resolver.answer(text)

        assert answer.intent is QueryIntent.GLOBAL
        assert answer.message == f"I do not have {key} for anyone yet."
        assert answer.subject_uri is None

    def test_no_match(self, resolver: QueryResolver):
        assert resolver.answer("What is the zodiac sign?").message == (
            "I do not have Zodiac Sign for anyone yet."
        )


class TestSubjectResolution:
    def test_exact_name_beats_fuzzy(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Joe's Coffee Shop", "hours", "9-5")
        learn(store, "Joe", "coffee", "Espresso")
        assert resolver.resolve_subject("joe").uri == "dojo.con.joe"

    def test_partial_name_is_opt_in(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Jane Doe", "city", "Tokyo")

        assert resolver.resolve_subject("Jane") is None
        subject = resolver.resolve_subject("Jane", allow_partial=True)
        assert subject.uri == "dojo.con.jane_doe"
        assert subject.display_name == "Jane Doe"

    def test_ambiguous_partial_name(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Jane Doe", "city", "Tokyo")
        learn(store, "Jane Roe", "city", "Rome")
        assert resolver.resolve_subject("Jane", allow_partial=True) is None

    def test_partial_name_in_profile_question(self, store: LedgerStore, resolver: QueryResolver):
        learn(store, "Jane Doe", "city", "Tokyo")
        answer = resolver.answer("Who is Jane?")
        assert answer.message == "Here is what I know about Jane Doe: City: Tokyo."

    def test_inferred_identifier_with_facts(self, store: LedgerStore, resolver: QueryResolver):
        """Vault rows alone are enough to know a subject."""
        learn(store, "Joe", "coffee", "Espresso")
        store.delete_record("dojo.con.joe")

        subject = resolver.resolve_subject("Joe")

        assert subject.uri == "dojo.con.joe"
        assert subject.display_name == "Joe"

    def test_unknown(self, resolver: QueryResolver):
        assert resolver.resolve_subject("Nobody") is None
        assert resolver.resolve_subject("   ") is None


class TestUnknownFormat:
    def test_hint(self, resolver: QueryResolver):
        answer = resolver.answer("How are you?")
        assert answer.intent is QueryIntent.UNKNOWN
        assert answer.message == UNKNOWN_FORMAT_MESSAGE
