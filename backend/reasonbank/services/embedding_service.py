"""Embedding service.

Central place to generate embeddings (OpenAI / Ollama / local hashing).
Provider failures fall back to zeros; the embedding guard rejects those
before they are persisted.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
from typing import Any

import httpx
import numpy as np
from openai import AsyncOpenAI

from reasonbank.core.config import settings

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class EmbeddingService:
    _ollama_sem: asyncio.Semaphore | None = None

    @classmethod
    def _zeros(cls) -> list[float]:
        return [0.0] * int(settings.EMBEDDING_DIMENSIONS)

    @classmethod
    def _ollama_semaphore(cls) -> asyncio.Semaphore:
        if cls._ollama_sem is None:
            cls._ollama_sem = asyncio.Semaphore(int(settings.OLLAMA_MAX_CONCURRENCY or 2))
        return cls._ollama_sem

    @classmethod
    async def _embed_ollama(cls, text: str) -> list[float]:
        base_url = str(settings.OLLAMA_BASE_URL or "http://localhost:11434").rstrip("/")
        payload: dict[str, Any] = {"model": settings.OLLAMA_EMBEDDING_MODEL, "prompt": text}

        async with cls._ollama_semaphore():
            async with httpx.AsyncClient(timeout=float(settings.OLLAMA_TIMEOUT_SECONDS)) as client:
                resp = await client.post(f"{base_url}/api/embeddings", json=payload)
                resp.raise_for_status()
                data = resp.json()

        emb = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(emb, list) or not emb:
            raise ValueError("Ollama embedding response missing 'embedding' list")

        return [float(x) for x in emb]

    @classmethod
    async def _embed_openai(cls, text: str) -> list[float]:
        if not settings.OPENAI_API_KEY:
            return cls._zeros()

        client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        resp = await client.embeddings.create(
            model=settings.EMBEDDING_MODEL,
            input=text,
            dimensions=int(settings.EMBEDDING_DIMENSIONS),
        )
        return [float(x) for x in resp.data[0].embedding]

    @classmethod
    def embed_hashing(cls, text: str, dimensions: int | None = None) -> list[float]:
        """Deterministic signed feature-hashing embedding (offline provider).

        Each token lands in one bucket with a +/-1 sign taken from its
        SHA-256 digest; the result is L2-normalized.
        """
        dim = int(dimensions or settings.EMBEDDING_DIMENSIONS)
        vec = np.zeros(dim, dtype=np.float64)
        for token in _TOKEN_RE.findall((text or "").lower()):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % dim
            sign = 1.0 if digest[4] & 1 else -1.0
            vec[bucket] += sign

        norm = float(np.linalg.norm(vec))
        if norm == 0.0:
            return [0.0] * dim
        return (vec / norm).tolist()

    @classmethod
    async def embed(cls, text: str) -> list[float]:
        # Safety: never embed empty text.
        cleaned = (text or "").strip()
        if not cleaned:
            return cls._zeros()

        provider = str(settings.EMBEDDING_PROVIDER or "auto").lower()

        if provider == "hashing":
            return cls.embed_hashing(cleaned)

        # Local-first default: if no OpenAI key, try Ollama.
        if provider == "auto":
            provider = "openai" if bool(settings.OPENAI_API_KEY) else "ollama"

        if provider == "ollama":
            try:
                return await cls._embed_ollama(cleaned)
            except Exception:
                # If Ollama isn't available, fall back to OpenAI if configured; otherwise zeros.
                if settings.OPENAI_API_KEY:
                    try:
                        return await cls._embed_openai(cleaned)
                    except Exception:
                        return cls._zeros()
                return cls._zeros()

        if provider == "openai":
            try:
                return await cls._embed_openai(cleaned)
            except Exception:
                try:
                    return await cls._embed_ollama(cleaned)
                except Exception:
                    return cls._zeros()

        # Unknown provider -> zeros, rejected downstream by the guard.
        return cls._zeros()
