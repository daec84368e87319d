# embeddings.py
# Sentence-transformer embedding client (model loaded on first use).

import logging
import threading
from typing import List, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """Turns text into fixed-dimension float vectors."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._lock = threading.Lock()

    def _load(self) -> SentenceTransformer:
        with self._lock:
            if self._model is None:
                logger.info("Loading embedding model %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
            return self._model

    @property
    def dimension(self) -> int:
        return self._load().get_sentence_embedding_dimension()

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        if not texts:
            return []
        vectors = self._load().encode(list(texts), convert_to_numpy=True)
        return [np.asarray(v, dtype=np.float32) for v in vectors]

    def embed_one(self, text: str) -> np.ndarray:
        return self.embed([text])[0]
