# fallback_scorer.py
"""
Keyword scoring used when semantic search is not available.

Each rule pairs a topic keyword with the phrases a user might type for it.
A rule adds its weight to an entry when the topic starts a word in the entry text
AND one of the phrases starts a word in the description. Rules never interact:
an entry's score is the plain sum of the weights of the rules it fires.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Sequence, Tuple

from kb_store import KBStore, SopEntry
from errors import ConfigurationError


@lru_cache(maxsize=None)
def _word_start(term: str):
    # Terms match at the start of a word, so "sag" does not fire on "usage".
    return re.compile(r"\b" + re.escape(term))


@dataclass(frozen=True)
class KeywordRule:
    topic: str
    phrases: Tuple[str, ...]
    weight: int = 2

    def fires(self, description: str, entry_text: str) -> bool:
        if not _word_start(self.topic).search(entry_text):
            return False
        return any(_word_start(p).search(description) for p in self.phrases)


KEYWORD_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("orange peel", ("orange peel", "orange-peel", "dimpled", "textured finish")),
    KeywordRule("atomization", ("spray", "atomiz", "gun pressure", "nozzle")),
    KeywordRule("adhesion", ("adhesion", "peeling", "peels off", "flaking", "lifting",
                             "delaminat", "tape test", "cross-hatch", "not sticking")),
    KeywordRule("drying", ("dry", "cure", "curing", "oven", "line speed", "tacky")),
    KeywordRule("pinhol", ("pinhol", "pin hole", "tiny holes", "pores", "porosity")),
    KeywordRule("viscosity", ("viscosity", "too thick", "too thin", "flow cup")),
    KeywordRule("contamination", ("contamina", "oil", "grease", "dirty", "dust")),
    KeywordRule("sag", ("sag", "runs", "drip", "curtain")),
    KeywordRule("film thickness", ("thick film", "film build", "heavy coat", "too many passes")),
    KeywordRule("blister", ("blister", "bubble", "swelling", "swollen")),
    KeywordRule("humidity", ("humid", "moisture", "damp", "condensation")),
    KeywordRule("crater", ("crater", "fish eye", "fisheye", "cissing")),
    KeywordRule("silicone", ("silicone",)),
    KeywordRule("solvent", ("solvent", "thinner", "reducer", "retarder")),
    KeywordRule("blushing", ("blush", "milky", "hazy", "haze", "cloudy")),
)


def score_entry(description: str,
                entry: SopEntry,
                rules: Sequence[KeywordRule] = KEYWORD_RULES) -> int:
    q = (description or "").lower()
    text = entry.text.lower()
    score = 0
    for rule in rules:
        if rule.fires(q, text):
            score += rule.weight
    return score


def score_all(description: str,
              kb: KBStore,
              rules: Sequence[KeywordRule] = KEYWORD_RULES) -> List[Tuple[SopEntry, int]]:
    """All entries ranked by score, highest first; ties keep catalog order."""
    scored = [(entry, score_entry(description, entry, rules)) for entry in kb.all()]
    # sorted() is stable, so equal scores stay in declaration order
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


def best_match(description: str,
               kb: KBStore,
               rules: Sequence[KeywordRule] = KEYWORD_RULES) -> Tuple[SopEntry, int]:
    ranked = score_all(description, kb, rules)
    if not ranked:
        raise ConfigurationError("Knowledge base is empty; keyword fallback has nothing to rank")
    return ranked[0]
