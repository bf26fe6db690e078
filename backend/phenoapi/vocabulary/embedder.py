"""Sentence-Transformers embeddings for vocabulary labels.

Labels are short noun phrases ("Gait ataxia", "Hearing loss"), so they are
encoded as-is, without instruction prefixes. Vectors are L2-normalised, which
makes FAISS inner product equal to cosine similarity.
"""
import logging

import numpy as np

from phenoapi.config import settings

logger = logging.getLogger(__name__)


class LabelEmbedder:
    def __init__(self, model_name: str | None = None):
        self.model_name = model_name or settings.embed_model
        self._model = None

    @property
    def model(self):
        """The SentenceTransformer, loaded on first use (CUDA when available)."""
        if self._model is None:
            import torch
            from sentence_transformers import SentenceTransformer

            device = "cuda" if torch.cuda.is_available() else "cpu"
            logger.info(f"Loading label embedding model '{self.model_name}' on device={device}")
            self._model = SentenceTransformer(self.model_name, device=device)
        return self._model

    def encode(self, texts: list[str], batch_size: int = 64) -> np.ndarray:
        vecs = self.model.encode(
            texts,
            batch_size=batch_size,
            normalize_embeddings=True,
            show_progress_bar=len(texts) > 500,
        )
        return np.asarray(vecs, dtype="float32")

    def encode_labels(self, docs: list[dict], batch_size: int = 64) -> np.ndarray:
        """One row per label document, in document order."""
        return self.encode([d["label"] for d in docs], batch_size=batch_size)

    def encode_query(self, text: str) -> np.ndarray:
        return self.encode([text])[0]


_embedder: LabelEmbedder | None = None

def get_embedder() -> LabelEmbedder:
    global _embedder
    if _embedder is None:
        _embedder = LabelEmbedder()
    return _embedder
