"""Code embeddings through the Voyage AI embeddings API, and their storage in Qdrant."""

import asyncio
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional

import blake3
import httpx

from ..resilience.breakers import QDRANT, VOYAGE, get_breaker_registry
from ..resilience.circuit_breaker import CircuitBreaker
from ..resilience.retry import with_retry
from .job_manager import CancellationToken
from .models import CodeSnippet

logger = logging.getLogger(__name__)

MAX_TOKENS_PER_BATCH = 60_000  # conservative margin under the API's 120K limit
MAX_INPUTS_PER_BATCH = 200
MAX_SNIPPET_CHARS = 8000
MAX_RATE_LIMIT_RETRIES = 3
DEFAULT_CONCURRENCY = 3


class EmbeddingError(Exception):
    """Embedding API failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        token_limit: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.token_limit = token_limit


def is_retryable(error: BaseException) -> bool:
    """Network failures and server errors are worth retrying; client errors are not."""
    if isinstance(error, httpx.TransportError):
        return True
    return isinstance(error, EmbeddingError) and (error.status_code or 0) >= 500


def estimate_tokens(text: str) -> int:
    # Code runs at roughly 3 characters per token
    return math.ceil(len(text) / 3)


def snippet_to_text(snippet: CodeSnippet) -> str:
    """Text sent to the embedding model for a snippet."""
    code = snippet.code
    if len(code) > MAX_SNIPPET_CHARS:
        code = code[:MAX_SNIPPET_CHARS] + "\n// ... truncated"
    return f"// {snippet.file}:{snippet.start_line}\n// {snippet.name}\n{code}"


def build_batches(snippets: List[CodeSnippet]) -> List[List[CodeSnippet]]:
    """Group snippets into batches bounded by estimated tokens and input count."""
    batches: List[List[CodeSnippet]] = []
    current: List[CodeSnippet] = []
    current_tokens = 0

    for snippet in snippets:
        tokens = estimate_tokens(snippet_to_text(snippet))
        if current and (
            current_tokens + tokens > MAX_TOKENS_PER_BATCH or len(current) >= MAX_INPUTS_PER_BATCH
        ):
            batches.append(current)
            current = []
            current_tokens = 0
        current.append(snippet)
        current_tokens += tokens

    if current:
        batches.append(current)
    return batches


class VoyageEmbeddings:
    """Generate embeddings with a Voyage-compatible HTTP API."""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = "https://api.voyageai.com/v1/embeddings",
        model: str = "voyage-code-3",
        cache_dir: Optional[Path] = None,
        breaker: Optional[CircuitBreaker] = None,
        timeout: float = 60.0,
    ):
        """Initialize the embeddings client.

        Args:
            api_key: Bearer token for the API; requests fail without one
            api_url: Embeddings endpoint
            model: Name of the embedding model to use
            cache_dir: Directory for caching embeddings (None to disable)
            breaker: Circuit breaker for the API (defaults to the shared voyage-ai breaker)
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self.breaker = breaker or get_breaker_registry().get(VOYAGE)
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._client_loop_id: Optional[int] = None

        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Embedding cache enabled at: {self.cache_dir}")

        logger.info(f"Initialized embeddings with model: {model}")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create an httpx client for the current event loop.

        Returns:
            httpx.AsyncClient instance for current event loop
        """
        loop_id = id(asyncio.get_running_loop())
        if self._client is None or self._client_loop_id != loop_id:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._client_loop_id = loop_id
            logger.debug(f"Created new httpx client for event loop {loop_id}")
        return self._client

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Blake3 hash of model, input type and text."""
        return blake3.blake3(f"{self.model}:{input_type}:{text}".encode()).hexdigest()

    def _get_cached_embedding(self, cache_key: str) -> Optional[List[float]]:
        if not self.cache_dir:
            return None

        cache_file = self.cache_dir / f"{cache_key}.json"
        if cache_file.exists():
            try:
                with open(cache_file, "r") as f:
                    return json.load(f)["embedding"]
            except Exception as e:
                logger.warning(f"Error reading cache file {cache_file}: {e}")
        return None

    def _save_cached_embedding(self, cache_key: str, embedding: List[float]) -> None:
        if not self.cache_dir:
            return

        cache_file = self.cache_dir / f"{cache_key}.json"
        try:
            with open(cache_file, "w") as f:
                json.dump({"embedding": embedding}, f)
        except Exception as e:
            logger.warning(f"Error writing cache file {cache_file}: {e}")

    async def _post(self, texts: List[str], input_type: str) -> httpx.Response:
        """One API request. Server errors raise so the breaker and retry see them."""
        response = await self._get_client().post(
            self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "input": texts, "input_type": input_type},
        )
        if response.status_code >= 500:
            raise EmbeddingError(
                f"Voyage AI returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def fetch_embeddings(self, texts: List[str], input_type: str = "document") -> List[List[float]]:
        """Embed texts with one API call.

        Rate-limited responses are retried honouring ``retry-after``; network
        failures and server errors are retried with backoff.

        Args:
            texts: Texts to embed
            input_type: "document" for indexed code, "query" for searches

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingError: On client errors or when retries are exhausted
        """
        if not self.api_key:
            raise EmbeddingError("VOYAGE_API_KEY is required to generate embeddings")

        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            response = await with_retry(
                lambda: self.breaker.call(self._post, texts, input_type),
                retry_on=is_retryable,
            )

            if response.status_code == 429:
                if attempt >= MAX_RATE_LIMIT_RETRIES:
                    raise EmbeddingError("Voyage AI rate limited after max retries", status_code=429)
                retry_after = response.headers.get("retry-after")
                delay = float(retry_after) if retry_after and retry_after.isdigit() else float(attempt + 1)
                logger.warning(f"Voyage rate limited (attempt {attempt + 1}), backing off {delay}s")
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 400:
                body = response.text
                raise EmbeddingError(
                    f"Voyage AI returned {response.status_code}: {body}",
                    status_code=response.status_code,
                    token_limit=response.status_code == 400 and "max allowed tokens" in body,
                )

            try:
                data = sorted(response.json()["data"], key=lambda d: d["index"])
            except (KeyError, ValueError) as e:
                raise EmbeddingError(f"Unexpected API response format: {e}") from e
            return [item["embedding"] for item in data]

        raise EmbeddingError("Voyage AI rate limited after max retries", status_code=429)

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed document texts, serving what it can from the cache."""
        embeddings: List[Optional[List[float]]] = [None] * len(texts)
        missing: List[int] = []
        for i, text in enumerate(texts):
            cached = self._get_cached_embedding(self._get_cache_key(text, "document"))
            if cached is not None:
                embeddings[i] = cached
            else:
                missing.append(i)

        if missing:
            generated = await self.fetch_embeddings([texts[i] for i in missing], "document")
            for i, vector in zip(missing, generated):
                embeddings[i] = vector
                self._save_cached_embedding(self._get_cache_key(texts[i], "document"), vector)
            logger.debug(f"Generated {len(missing)} embeddings ({len(texts) - len(missing)} cached)")

        return embeddings

    async def embed_query(self, query: str) -> List[float]:
        vectors = await self.fetch_embeddings([query], "query")
        if not vectors:
            raise EmbeddingError("Failed to generate query embedding")
        return vectors[0]

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get statistics about the embedding cache.

        Returns:
            Dictionary with cache statistics
        """
        if not self.cache_dir:
            return {"enabled": False}

        cache_files = list(self.cache_dir.glob("*.json"))
        total_size = sum(f.stat().st_size for f in cache_files)
        return {
            "enabled": True,
            "cache_dir": str(self.cache_dir),
            "cached_embeddings": len(cache_files),
            "total_size_mb": round(total_size / (1024 * 1024), 2),
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.warning(f"Error closing httpx client: {e}")
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


async def embed_and_store(
    embedder: VoyageEmbeddings,
    vector_db: Any,
    repo_id: str,
    snippets: List[CodeSnippet],
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel_token: Optional[CancellationToken] = None,
    qdrant_breaker: Optional[CircuitBreaker] = None,
) -> int:
    """Embed snippets in token-bounded batches and upsert them into the repo's collection.

    Batches run on ``concurrency`` workers. A batch rejected for exceeding the
    token limit is split in half and retried. The first failing batch stops
    the remaining work and its error is raised.

    Args:
        embedder: Embeddings client
        vector_db: CodeVectorDB for the upserts
        repo_id: Repository identifier
        snippets: Snippets to embed
        concurrency: Number of concurrent API calls
        cancel_token: Checked before every batch
        qdrant_breaker: Breaker for the vector store (defaults to the shared qdrant breaker)

    Returns:
        Number of embeddings stored
    """
    if not snippets:
        logger.info(f"No code snippets to embed for {repo_id}")
        return 0

    breaker = qdrant_breaker or get_breaker_registry().get(QDRANT)
    await asyncio.to_thread(breaker.call_sync, vector_db.ensure_collection, repo_id)

    batches = build_batches(snippets)
    logger.info(f"Embedding {len(snippets)} snippets for {repo_id} in {len(batches)} batches")

    async def process(batch: List[CodeSnippet]) -> int:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            vectors = await embedder.embed_documents([snippet_to_text(s) for s in batch])
        except EmbeddingError as e:
            if e.token_limit and len(batch) > 1:
                logger.warning(f"Token limit exceeded for batch of {len(batch)}, splitting")
                mid = len(batch) // 2
                return await process(batch[:mid]) + await process(batch[mid:])
            raise
        return await asyncio.to_thread(breaker.call_sync, vector_db.upsert_snippets, repo_id, batch, vectors)

    queue: asyncio.Queue = asyncio.Queue()
    for batch in batches:
        queue.put_nowait(batch)
    stored: List[int] = []
    errors: List[BaseException] = []

    async def worker() -> None:
        while not queue.empty() and not errors:
            batch = queue.get_nowait()
            try:
                stored.append(await process(batch))
            except Exception as e:
                errors.append(e)

    await asyncio.gather(*(worker() for _ in range(min(concurrency, len(batches)))))

    if errors:
        raise errors[0]

    total = sum(stored)
    logger.info(f"Stored {total} embeddings for {repo_id} ({len(snippets)} snippets)")
    return total
