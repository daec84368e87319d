import threading
import time
from dataclasses import replace

import numpy as np
import pytest

from config import Settings
from diagnostics import DiagnosticsService
from kb_store import KBStore
from match_resolver import MatchResolver

VOCAB = [
    "orange peel", "adhesion", "pinhol", "viscosity", "sag", "blister",
    "crater", "fish eye", "silicone", "humidity", "blushing", "solvent",
    "drying", "contamination", "spray",
]


class KeywordEmbedder:
    """Deterministic bag-of-keywords vectors; records every call."""

    def __init__(self):
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            t = text.lower()
            vec = np.array([t.count(word) for word in VOCAB], dtype=np.float32)
            vec = np.append(vec, 0.01)  # never all-zero
            vectors.append(vec)
        return vectors

    def embed_one(self, text):
        return self.embed([text])[0]


class FailingEmbedder(KeywordEmbedder):
    def embed(self, texts):
        self.calls.append(list(texts))
        raise RuntimeError("embedding service down")


class HangingEmbedder(KeywordEmbedder):
    """Blocks every call until `release` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def embed(self, texts):
        self.release.wait(5)
        return super().embed(texts)


class StubIndex:
    def __init__(self, matches=None, error=None, delay=0.0):
        self.matches = matches or []
        self.error = error
        self.delay = delay
        self.queries = 0

    def query(self, vector, top_k=3):
        self.queries += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.matches)[:top_k]

    def upsert(self, records):
        raise AssertionError("StubIndex is query-only")


class RecordingStore:
    def __init__(self, error=None):
        self.objects = {}
        self.error = error

    def put(self, key, data, content_type="application/octet-stream"):
        if self.error:
            raise self.error
        self.objects[key] = (data, content_type)
        return key


class HangingStore(RecordingStore):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def put(self, key, data, content_type="application/octet-stream"):
        self.release.wait(5)
        return super().put(key, data, content_type)


class StaticRationale:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate(self, description, entry, score=None, strategy="keyword"):
        self.calls.append((description, entry.code, score, strategy))
        if self.error:
            raise self.error
        return self.text


class BlockingRationale(StaticRationale):
    def __init__(self, text=""):
        super().__init__(text)
        self.release = threading.Event()

    def generate(self, description, entry, score=None, strategy="keyword"):
        self.release.wait(5)
        return super().generate(description, entry, score, strategy)


@pytest.fixture
def kb():
    return KBStore()


@pytest.fixture
def settings():
    return Settings(rationale_backend="none", external_timeout=2.0, rationale_timeout=2.0)


@pytest.fixture
def make_service(kb, settings):
    def _make(embedder=None, vector_index=None, rationale=None, object_store=None,
              **overrides):
        service_settings = replace(settings, **overrides)
        resolver = MatchResolver(kb, embedder=embedder, vector_index=vector_index,
                                 timeout=service_settings.external_timeout)
        return DiagnosticsService(
            kb,
            resolver,
            settings=service_settings,
            embedder=embedder,
            vector_index=vector_index,
            rationale=rationale,
            object_store=object_store,
        )
    return _make
