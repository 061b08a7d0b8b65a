import logging
from typing import Dict, List, Sequence

logger = logging.getLogger(__name__)


class EmbeddingUnavailableError(RuntimeError):
    pass


class SentenceEmbedder:
    """Sentence-transformers text embeddings with a per-text cache.

    The model is loaded on first use. Vectors are unit-normalised, so cosine
    similarity reduces to a dot product.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive (got {batch_size})")
        self.model_name = model_name
        self.batch_size = batch_size
        self._model = None
        self._cache: Dict[str, List[float]] = {}

    def available(self) -> bool:
        try:
            import sentence_transformers  # noqa: F401
            return True
        except ModuleNotFoundError:
            return False

    def _load(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ModuleNotFoundError as exc:
                raise EmbeddingUnavailableError(
                    "sentence-transformers is not installed; install the 'embeddings' extra"
                ) from exc
            try:
                self._model = SentenceTransformer(self.model_name)
            except (OSError, ValueError) as exc:
                raise EmbeddingUnavailableError(f"Could not load embedding model {self.model_name}: {exc}") from exc
            logger.info("Loaded embedding model=%s", self.model_name)
        return self._model

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        pending = [text for text in dict.fromkeys(texts) if text not in self._cache]
        if pending:
            model = self._load()
            for start in range(0, len(pending), self.batch_size):
                batch = pending[start : start + self.batch_size]
                vectors = model.encode(batch, normalize_embeddings=True)
                for text, vector in zip(batch, vectors):
                    self._cache[text] = [float(v) for v in vector]
                logger.debug("Embedded batch start=%d size=%d", start, len(batch))
        return [list(self._cache[text]) for text in texts]

    def cache_size(self) -> int:
        return len(self._cache)
