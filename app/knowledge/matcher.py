"""Deterministic scripted-response cascade.

The configured flows are compiled into one ordered rule table:

1. ``exact``: quick-intent trigger phrases, in configured order.
2. ``fuzzy``: each intent's keywords then synonyms, intents in configured order.
3. ``legacy_regex``: fixed onboarding rules, in the order register, kyc, pan, aadhaar,
   documents, tat.

``match`` walks the table once and returns the first hit. All phrases and messages are
normalized the same way before comparison.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Literal, Optional, Pattern, Sequence, Tuple

from .flows import LEGACY_RULE_NAMES, Flows
from .normalize import contains_phrase, normalize

RuleKind = Literal["exact", "fuzzy", "legacy_regex"]

LEGACY_PATTERNS = {
    "register": r"\b(register|registration|sign ?up|open (an |my )?account|create (an |my )?account)\b",
    "kyc": r"\b(kyc|know your customer)\b",
    "pan": r"\bpan( card| number)?\b",
    "aadhaar": r"\b(aadhaar|aadhar|adhaar)\b",
    "documents": r"\b(documents?|docs|paperwork|what do i need to (submit|upload))\b",
    "tat": (
        r"\b(tat|turn ?around( time)?|processing time|activation time"
        r"|how (long|many days) (does|will|would) (it|activation|account activation|my account|kyc|my kyc"
        r"|registration|verification|onboarding|processing))\b"
    ),
}


@dataclass(frozen=True)
class Rule:
    kind: RuleKind
    name: str
    phrases: Tuple[str, ...]
    response: str
    suggested: Tuple[str, ...] = ()
    pattern: Optional[Pattern[str]] = None

    def hits(self, normalized_message: str) -> bool:
        if self.pattern is not None:
            return self.pattern.search(normalized_message) is not None
        return any(contains_phrase(normalized_message, p) for p in self.phrases)


@dataclass(frozen=True)
class MatchResult:
    reply: str
    suggested: Tuple[str, ...]
    kind: RuleKind
    name: str


def _phrases(raw: Sequence[str]) -> Tuple[str, ...]:
    return tuple(p for p in (normalize(s) for s in raw) if p)


def build_rules(flows: Flows) -> Tuple[Rule, ...]:
    rules: List[Rule] = []
    for qi in flows.quick_intents:
        phrases = _phrases(qi.triggers)
        if phrases:
            rules.append(Rule("exact", qi.name, phrases, qi.response, qi.suggested))
    for intent in flows.intents:
        phrases = _phrases(list(intent.keywords) + list(intent.synonyms))
        if phrases:
            rules.append(Rule("fuzzy", intent.name, phrases, intent.response, intent.suggested))
    for name in LEGACY_RULE_NAMES:
        canned = flows.onboarding.get(name)
        if canned is None:
            continue
        rules.append(Rule(
            "legacy_regex",
            name,
            (),
            canned.response,
            canned.suggested,
            pattern=re.compile(LEGACY_PATTERNS[name]),
        ))
    return tuple(rules)


def match(message: str, rules: Sequence[Rule]) -> Optional[MatchResult]:
    """First rule that hits the normalized message wins; pure and side-effect free."""
    text = normalize(message)
    if not text:
        return None
    for rule in rules:
        if rule.hits(text):
            return MatchResult(reply=rule.response, suggested=rule.suggested, kind=rule.kind, name=rule.name)
    return None


class KnowledgeMatcher:
    def __init__(self, flows: Flows):
        self.flows = flows
        self.rules = build_rules(flows)

    def match(self, message: str) -> Optional[MatchResult]:
        return match(message, self.rules)
