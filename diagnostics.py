# diagnostics.py
"""
Request orchestration for the coating defect service.

Flask-independent: api_server.py parses JSON into the pydantic models in
schemas.py and hands them to a DiagnosticsService. Each method is a
single-pass pipeline; the only shared state is the read-only KB.
"""

import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeout
from numbers import Number
from typing import Dict, Optional

from config import Settings
from embeddings import SentenceTransformerEmbedder
from errors import ConfigurationError, RequestError, ServiceError
from kb_store import KBStore
from match_resolver import MatchCandidate, MatchResolver
from object_store import (
    DEFAULT_CONTENT_TYPE,
    analysis_upload_key,
    build_object_store,
    client_upload_key,
    decode_base64_payload,
)
from outcome import IMAGE_EXECUTOR, RATIONALE_EXECUTOR, Outcome, attempt
from rationale import build_rationale_generator
from schemas import AnalyzeRequest, ChatRequest, LegacyRequest, UploadRequest
from vector_index import VectorRecord, build_vector_index

logger = logging.getLogger(__name__)

MIN_CHAT_LENGTH = 3
CLARIFY_PROMPT = (
    "Could you describe the defect in a bit more detail? For example: "
    "what the surface looks like, where it appears, and when it started."
)
NO_RATIONALE_REPLY = (
    "Follow the root causes and corrective actions of this SOP in the listed order."
)

# Two reseeds against one index could interleave their upserts
SEED_LOCK = threading.Lock()


class DiagnosticsService:
    def __init__(self,
                 kb: KBStore,
                 resolver: MatchResolver,
                 settings: Optional[Settings] = None,
                 embedder=None,
                 vector_index=None,
                 rationale=None,
                 object_store=None):
        self.kb = kb
        self.resolver = resolver
        self.settings = settings or Settings()
        self.embedder = embedder
        self.vector_index = vector_index
        self.rationale = rationale
        self.object_store = object_store

    # ------------------------------------------------------------------
    # Analyze
    # ------------------------------------------------------------------

    def _store_analysis_image(self, image_base64: str, filename: Optional[str]) -> Outcome:
        if self.object_store is None:
            return Outcome.failure("object store not configured")
        try:
            data = decode_base64_payload(image_base64)
        except ValueError as e:
            logger.warning("Ignoring analyze image: %s", e)
            return Outcome.failure(str(e))
        key = analysis_upload_key(filename)
        return attempt("image storage", self.object_store.put, key, data, DEFAULT_CONTENT_TYPE)

    def _generate_rationale(self, description: str, candidate: MatchCandidate, entry) -> str:
        if self.rationale is None:
            return ""
        generated = attempt(
            "rationale generation",
            self.rationale.generate,
            description,
            entry,
            candidate.score,
            candidate.strategy,
            timeout=self.settings.rationale_timeout,
            executor=RATIONALE_EXECUTOR,
        )
        return generated.value_or("") or ""

    def analyze(self, req: AnalyzeRequest) -> Dict:
        image_future = None
        if req.image_base64:
            image_future = IMAGE_EXECUTOR.submit(self._store_analysis_image,
                                                 req.image_base64, req.filename)

        candidate, entry = self.resolver.resolve_entry(req.description)
        rationale = self._generate_rationale(req.description, candidate, entry)

        image_key = None
        if image_future is not None:
            try:
                stored = image_future.result(timeout=self.settings.external_timeout)
                image_key = stored.value_or(None)
            except FutureTimeout:
                logger.warning("Image storage did not finish within %.1fs",
                               self.settings.external_timeout)

        return {
            "ok": True,
            "image_key": image_key,
            "best_match": candidate.to_dict(),
            "defect": entry.to_dict(),
            "rationale": rationale,
        }

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def chat(self, req: ChatRequest) -> Dict:
        message = (req.message or "").strip()
        if len(message) < MIN_CHAT_LENGTH:
            return {"reply": CLARIFY_PROMPT}

        result = self.analyze(AnalyzeRequest(description=message))
        return {"reply": format_chat_reply(result)}

    # ------------------------------------------------------------------
    # Upload / Seed / Health
    # ------------------------------------------------------------------

    def upload(self, req: UploadRequest) -> Dict:
        if self.object_store is None:
            raise ConfigurationError("Object store is not configured (set OBJECT_STORE)")
        try:
            data = decode_base64_payload(req.data)
        except ValueError as e:
            raise RequestError(f"Invalid data: {e}")

        key = client_upload_key(req.filename)
        stored = attempt("object storage", self.object_store.put, key, data,
                         req.content_type or DEFAULT_CONTENT_TYPE,
                         timeout=self.settings.external_timeout)
        if not stored.ok:
            raise ServiceError(stored.error)
        return {"ok": True, "key": key}

    def seed(self) -> Dict:
        if self.vector_index is None or self.embedder is None:
            raise ConfigurationError("Vector index is not configured (set VECTOR_INDEX)")

        with SEED_LOCK:
            entries = self.kb.all()
            embedded = attempt("seed embedding", self.embedder.embed,
                               [e.text for e in entries],
                               timeout=self.settings.external_timeout)
            if not embedded.ok:
                raise ServiceError(embedded.error)

            vectors = embedded.value
            records = [
                VectorRecord(id=entry.code, vector=vector, metadata=entry.metadata())
                for entry, vector in zip(entries, vectors)
            ]
            upserted = attempt("vector upsert", self.vector_index.upsert, records,
                               timeout=self.settings.external_timeout)
            if not upserted.ok:
                raise ServiceError(upserted.error)
            result = upserted.value

        logger.info("Seeded %d SOP entries (mutation=%s)", result.count, result.mutation_id)
        return {"ok": True, "mutationId": result.mutation_id, "count": result.count}

    def health(self) -> Dict:
        return {
            "ok": True,
            "service": self.settings.service_name,
            "kb_entries": len(self.kb),
            "backends": {
                "vector_index": self.settings.vector_index if self.vector_index else "none",
                "rationale": self.settings.rationale_backend if self.rationale else "none",
                "object_store": self.settings.object_store if self.object_store else "none",
            },
        }

    # ------------------------------------------------------------------
    # Legacy single-defect analyzer
    # ------------------------------------------------------------------

    def legacy_analyze(self, req: LegacyRequest) -> Dict:
        entry = self.kb.by_legacy_name(req.defect or "")
        if entry is None:
            return {
                "error": "Unknown defect type",
                "supported": list(self.kb.legacy_names()),
            }
        return {
            "defect": entry.legacy_name,
            "priority": entry.priority,
            "recommended_steps": list(entry.corrective_actions),
        }


def format_chat_reply(result: Dict) -> str:
    """Short natural-language summary of an analyze result."""
    match = result["best_match"]
    lines = [
        f"Most likely defect: {match['code']} - {match['name']}",
        f"Severity: {match['severity']}",
    ]
    score = match.get("score")
    if isinstance(score, Number) and not isinstance(score, bool):
        lines.append(f"Match score: {score}")
    lines.append("")
    lines.append(result.get("rationale") or NO_RATIONALE_REPLY)
    return "\n".join(lines)


def build_service(settings: Settings) -> DiagnosticsService:
    """Wire the KB and the configured backends into a DiagnosticsService."""
    kb = KBStore()
    vector_index = build_vector_index(settings)
    embedder = SentenceTransformerEmbedder(settings.embedding_model) if vector_index else None

    resolver = MatchResolver(
        kb,
        embedder=embedder,
        vector_index=vector_index,
        top_k=settings.vector_top_k,
        timeout=settings.external_timeout,
    )
    return DiagnosticsService(
        kb,
        resolver,
        settings=settings,
        embedder=embedder,
        vector_index=vector_index,
        rationale=build_rationale_generator(settings),
        object_store=build_object_store(settings),
    )
