"""Embedding generation for retrieval."""

from typing import List, Optional

import numpy as np
from openai import AsyncOpenAI

from cointext.infra.config import Config


class EmbeddingGenerator:
    """Generates embeddings with the OpenAI embeddings API."""
    
    def __init__(self, api_key: Optional[str], model: str = "text-embedding-3-small", client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        self.model = model
        self._openai_client = client
        self.embedding_dim = 1536  # text-embedding-3-small default
    
    @classmethod
    def from_config(cls, cfg: Config) -> "EmbeddingGenerator":
        return cls(api_key=cfg.OPENAI_API_KEY, model=cfg.EMBEDDING_MODEL)
    
    @property
    def openai_client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._openai_client is None:
            if not self.api_key:
                raise ValueError("OPENAI_API_KEY not configured")
            self._openai_client = AsyncOpenAI(api_key=self.api_key)
        return self._openai_client

    async def close(self) -> None:
        if self._openai_client is not None:
            await self._openai_client.close()
            self._openai_client = None

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Generate embedding for a text string.
        
        Args:
            text: Text to embed
        
        Returns:
            List of floats representing the embedding vector
        """
        response = await self.openai_client.embeddings.create(
            model=self.model,
            input=text,
        )
        return response.data[0].embedding
    
    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts in one request."""
        if not texts:
            return []
        response = await self.openai_client.embeddings.create(
            model=self.model,
            input=texts,
        )
        return [item.embedding for item in response.data]


def to_pgvector_literal(embedding: List[float]) -> str:
    """
    Validate an embedding and render it as a pgvector literal: [1,2,3]
    
    Raises:
        ValueError: If the embedding is empty or contains NaN/Inf values
    """
    embedding_array = np.asarray(embedding, dtype=np.float32)
    if embedding_array.ndim != 1 or embedding_array.size == 0:
        raise ValueError("Invalid embedding format")
    if not np.all(np.isfinite(embedding_array)):
        raise ValueError("Invalid embedding values")
    return "[" + ",".join(map(str, embedding_array.tolist())) + "]"
