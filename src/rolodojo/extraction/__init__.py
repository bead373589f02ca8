"""Rule-based extraction of facts from summonings."""

from .models import RULE_CONFIDENCE, Extraction, KeyValuePair
from .rules import RELATIONSHIP_KEY, RULES, Rule, RuleExtractor, is_question

__all__ = [
    "RELATIONSHIP_KEY",
    "RULES",
    "RULE_CONFIDENCE",
    "Extraction",
    "KeyValuePair",
    "Rule",
    "RuleExtractor",
    "is_question",
]
