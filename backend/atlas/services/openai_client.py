"""Async OpenAI client wrapper and related value objects.

Classes:
    EmbeddingBatch: Collected embedding vectors plus metadata returned from the embeddings API.
    ClusterLabel: Name and one-sentence description generated for a topic cluster.
    OpenAIService: Handles embeddings and cluster labelling with retry semantics.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from openai import AsyncOpenAI
from tenacity import RetryError, retry, stop_after_attempt, wait_exponential

from atlas.core.config import get_settings

LABEL_PROMPT = (
    "Analyze these posts and generate a topic label and brief description.\n"
    "Return JSON with:\n"
    "- name: A short topic name (1-3 words, title case)\n"
    "- description: A one-sentence description of what this cluster is about"
)
UNLABELLED_NAME = "Uncategorized"
LABEL_SAMPLE_SEPARATOR = "\n---\n"

_EMBED_BATCH_MAX = 256
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    model_revision: str | None = None
    provider: str = "openai"


@dataclass(slots=True)
class ClusterLabel:
    name: str
    description: str = ""


def parse_cluster_label(content: str | None) -> ClusterLabel:
    """Decode a chat reply into a label, defaulting on anything malformed."""

    try:
        data = json.loads(content or "{}")
    except json.JSONDecodeError:
        return ClusterLabel(name=UNLABELLED_NAME)
    if not isinstance(data, dict):
        return ClusterLabel(name=UNLABELLED_NAME)

    name = data.get("name")
    description = data.get("description")
    return ClusterLabel(
        name=name.strip() if isinstance(name, str) and name.strip() else UNLABELLED_NAME,
        description=description.strip() if isinstance(description, str) else "",
    )


class OpenAIService:
    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        settings = get_settings()
        api_key = settings.openai_api_key.get_secret_value() if settings.openai_api_key else None
        if client is not None:
            self._client = client
        elif api_key:
            self._client = AsyncOpenAI(api_key=api_key)
        else:
            self._client = None
        self._settings = settings

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def embedding_model(self) -> str:
        return self._settings.openai_embedding_model

    async def embed_text(self, text: str, *, model: Optional[str] = None) -> list[float]:
        batch = await self.embed_texts([text], model=model)
        if not batch.vectors:
            raise RuntimeError("Embedding provider returned no vector")
        return batch.vectors[0]

    async def embed_texts(
        self,
        texts: Iterable[str],
        *,
        model: Optional[str] = None,
    ) -> EmbeddingBatch:
        docs = list(texts)
        if self._client is None:
            raise RuntimeError("OpenAI client not configured. Set OPENAI_API_KEY.")

        if not docs:
            return EmbeddingBatch(vectors=[], model=model or self._settings.openai_embedding_model, dim=0)

        chosen_model = model or self._settings.openai_embedding_model
        vectors: list[list[float]] = []
        dim = 0
        model_revision: str | None = None

        for start in range(0, len(docs), _EMBED_BATCH_MAX):
            chunk = docs[start : start + _EMBED_BATCH_MAX]
            payload = dict(model=chosen_model, input=chunk)
            try:
                response = await _retry_embeddings(self._client, payload)
            except RetryError as exc:  # pragma: no cover - surfaces original error message
                raise exc.last_attempt.result()  # type: ignore[misc]

            chunk_vectors = [item.embedding for item in response.data]
            vectors.extend(chunk_vectors)
            if not dim and chunk_vectors:
                dim = len(chunk_vectors[0])
            response_model = getattr(response, "model", None)
            if response_model:
                model_revision = response_model

        return EmbeddingBatch(
            vectors=vectors,
            model=chosen_model,
            dim=dim,
            model_revision=model_revision,
            provider="openai",
        )

    async def label_cluster(
        self,
        texts: Sequence[str],
        *,
        model: Optional[str] = None,
    ) -> ClusterLabel:
        """Ask the chat model to name a cluster from a handful of member posts.

        An unconfigured client or an unparseable reply produces the
        ``Uncategorized`` label. Provider errors propagate once retries are spent.
        """

        if not texts or self._client is None:
            return ClusterLabel(name=UNLABELLED_NAME)

        samples = LABEL_SAMPLE_SEPARATOR.join(texts[: self._settings.label_sample_size])
        payload = dict(
            model=model or self._settings.openai_chat_model,
            messages=[
                {"role": "system", "content": LABEL_PROMPT},
                {"role": "user", "content": samples},
            ],
            response_format={"type": "json_object"},
            temperature=self._settings.label_temperature,
        )

        response = await _retry_chat(self._client, payload)
        if not response.choices:
            _LOGGER.warning("Cluster labelling reply had no choices")
            return ClusterLabel(name=UNLABELLED_NAME)
        content = getattr(response.choices[0].message, "content", "") or ""
        return parse_cluster_label(content)


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5), reraise=True)
async def _retry_chat(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.chat.completions.create(**payload)


@retry(wait=wait_exponential(multiplier=1, min=1, max=20), stop=stop_after_attempt(5))
async def _retry_embeddings(client: AsyncOpenAI, payload: dict[str, Any]):
    return await client.embeddings.create(**payload)
