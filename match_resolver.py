# match_resolver.py
"""
Defect match resolution: semantic search first, keyword scoring second.

    description
        -> embed + vector query (only when an index is configured)
        -> keyword fallback    (index off, embedding/query failed, or no hits)
        -> resolve code against the KB, default to the first entry

`resolve` never raises for external-service problems; those become a
keyword match. Scores are only comparable within one strategy: cosine
similarity for "vector", an integer rule count for "keyword".
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple, Union

import fallback_scorer
from kb_store import KBStore, SopEntry
from outcome import Outcome, attempt

logger = logging.getLogger(__name__)

STRATEGY_VECTOR = "vector"
STRATEGY_KEYWORD = "keyword"
STRATEGY_DEFAULT = "default"


@dataclass(frozen=True)
class MatchCandidate:
    code: str
    name: str
    severity: str
    score: Optional[Union[int, float]]
    strategy: str

    def to_dict(self) -> Dict:
        return asdict(self)


class MatchResolver:
    def __init__(self,
                 kb: KBStore,
                 embedder=None,
                 vector_index=None,
                 top_k: int = 3,
                 timeout: Optional[float] = 10.0):
        if not len(kb):
            raise ValueError("MatchResolver needs a non-empty knowledge base")
        self.kb = kb
        self.embedder = embedder
        self.vector_index = vector_index
        self.top_k = max(1, top_k)
        self.timeout = timeout

    @property
    def semantic_enabled(self) -> bool:
        return self.embedder is not None and self.vector_index is not None

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _semantic_match(self, description: str) -> Outcome:
        """Top vector hit as a MatchCandidate, or a failed Outcome."""
        embedded = attempt("embedding", self.embedder.embed_one, description,
                           timeout=self.timeout)
        if not embedded.ok:
            return embedded

        queried = attempt("vector query", self.vector_index.query, embedded.value,
                          self.top_k, timeout=self.timeout)
        if not queried.ok:
            return queried
        if not queried.value:
            return Outcome.failure("vector index returned no matches")

        top = queried.value[0]
        meta = top.metadata or {}
        return Outcome.success(MatchCandidate(
            code=meta.get("code") or top.id,
            name=meta.get("name", ""),
            severity=meta.get("severity", ""),
            score=top.score,
            strategy=STRATEGY_VECTOR,
        ))

    def _keyword_match(self, description: str) -> MatchCandidate:
        entry, score = fallback_scorer.best_match(description, self.kb)
        return MatchCandidate(
            code=entry.code,
            name=entry.name,
            severity=entry.severity,
            score=score,
            strategy=STRATEGY_KEYWORD,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_entry(self, description: str) -> Tuple[MatchCandidate, SopEntry]:
        candidate = None
        if self.semantic_enabled:
            semantic = self._semantic_match(description)
            if semantic.ok:
                candidate = semantic.value
            else:
                logger.warning("Semantic search unavailable (%s); using keyword fallback",
                               semantic.error)

        if candidate is None:
            candidate = self._keyword_match(description)

        entry = self.kb.lookup(candidate.code)
        if entry is None:
            entry = self.kb.first()
            logger.warning("Match code %r is not in the KB; substituting default %s",
                           candidate.code, entry.code)
            candidate = MatchCandidate(
                code=entry.code,
                name=entry.name,
                severity=entry.severity,
                score=None,
                strategy=STRATEGY_DEFAULT,
            )
        else:
            # Name/severity always come from the KB, not from stale index metadata
            candidate = MatchCandidate(
                code=entry.code,
                name=entry.name,
                severity=entry.severity,
                score=candidate.score,
                strategy=candidate.strategy,
            )

        logger.info("Matched %s via %s (score=%s)", candidate.code, candidate.strategy,
                    candidate.score)
        return candidate, entry

    def resolve(self, description: str) -> MatchCandidate:
        return self.resolve_entry(description)[0]
