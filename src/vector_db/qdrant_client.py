"""Qdrant vector database client wrapper for code snippet embeddings.

Each repository gets its own collection, named after the repo id.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import blake3
from qdrant_client import QdrantClient
from qdrant_client.http import models
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from ..indexer.models import CodeSnippet

logger = logging.getLogger(__name__)

VECTOR_SIZE = 1024  # voyage-code-3
CODE_PREVIEW_CHARS = 2000


def collection_name(repo_id: str) -> str:
    """Collection name for a repository; only alphanumerics, underscores and hyphens survive."""
    return "repo_" + re.sub(r"[^a-zA-Z0-9_-]", "_", repo_id)


def hex_to_uuid(hex_str: str) -> str:
    """Convert a hexadecimal string to a UUID format.

    Args:
        hex_str: Hexadecimal string (up to 32 characters)

    Returns:
        UUID string
    """
    hex_str = hex_str.ljust(32, "0")
    return f"{hex_str[0:8]}-{hex_str[8:12]}-{hex_str[12:16]}-{hex_str[16:20]}-{hex_str[20:32]}"


def snippet_point_id(repo_id: str, snippet: CodeSnippet) -> str:
    """Deterministic point id, so re-indexing a snippet overwrites its previous point."""
    key = f"{repo_id}:{snippet.file}:{snippet.name}:{snippet.start_line}"
    return hex_to_uuid(blake3.blake3(key.encode()).hexdigest()[:32])


class CodeVectorDB:
    """Wrapper for Qdrant vector database operations."""

    def __init__(self, host: str = "localhost", port: int = 6333, vector_size: int = VECTOR_SIZE):
        """Initialize Qdrant client.

        Args:
            host: Qdrant server host
            port: Qdrant server port
            vector_size: Dimension of embedding vectors
        """
        self.client = QdrantClient(host=host, port=port)
        self.vector_size = vector_size

    def collection_exists(self, repo_id: str) -> bool:
        name = collection_name(repo_id)
        collections = self.client.get_collections().collections
        return any(col.name == name for col in collections)

    def ensure_collection(self, repo_id: str) -> None:
        """Create the repository's collection if it doesn't exist."""
        name = collection_name(repo_id)
        try:
            if not self.collection_exists(repo_id):
                logger.info(f"Creating collection: {name}")
                self.client.create_collection(
                    collection_name=name,
                    vectors_config=VectorParams(
                        size=self.vector_size,
                        distance=Distance.COSINE,
                    ),
                )
        except Exception as e:
            logger.error(f"Error ensuring collection {name}: {e}")
            raise

    def upsert_snippets(
        self,
        repo_id: str,
        snippets: List[CodeSnippet],
        embeddings: List[Optional[List[float]]],
    ) -> int:
        """Insert or update snippets with their embeddings.

        Snippets whose embedding is None are skipped.

        Args:
            repo_id: Repository identifier
            snippets: Snippets to store
            embeddings: Embedding vectors corresponding to snippets

        Returns:
            Number of points upserted
        """
        if len(snippets) != len(embeddings):
            raise ValueError("Number of snippets must match number of embeddings")

        points = [
            PointStruct(
                id=snippet_point_id(repo_id, snippet),
                vector=embedding,
                payload={
                    "repoId": repo_id,
                    "name": snippet.name,
                    "file": snippet.file,
                    "startLine": snippet.start_line,
                    "endLine": snippet.end_line,
                    "codePreview": snippet.code[:CODE_PREVIEW_CHARS],
                },
            )
            for snippet, embedding in zip(snippets, embeddings)
            if embedding is not None
        ]
        if not points:
            return 0

        try:
            self.client.upsert(collection_name=collection_name(repo_id), points=points)
            logger.debug(f"Upserted {len(points)} snippets for {repo_id}")
            return len(points)
        except Exception as e:
            logger.error(f"Error upserting snippets: {e}")
            raise

    def search(
        self,
        repo_id: str,
        query_vector: List[float],
        limit: int = 10,
        file_filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Search for similar snippets in one repository.

        Args:
            repo_id: Repository identifier
            query_vector: Embedding vector of the search query
            limit: Maximum number of results to return
            file_filter: Only return snippets from this file path

        Returns:
            Matching snippets with scores; empty when the repository has no collection
        """
        if not self.collection_exists(repo_id):
            return []

        query_filter = None
        if file_filter:
            query_filter = models.Filter(
                must=[models.FieldCondition(key="file", match=models.MatchValue(value=file_filter))]
            )

        try:
            response = self.client.query_points(
                collection_name=collection_name(repo_id),
                query=query_vector,
                query_filter=query_filter,
                limit=limit,
                with_payload=True,
            )
        except Exception as e:
            logger.error(f"Error searching: {e}")
            raise

        results = []
        for point in response.points:
            payload = point.payload or {}
            results.append(
                {
                    "name": payload.get("name", ""),
                    "file": payload.get("file", ""),
                    "startLine": payload.get("startLine", 0),
                    "endLine": payload.get("endLine", 0),
                    "codePreview": payload.get("codePreview", ""),
                    "score": point.score,
                }
            )
        logger.info(f"Found {len(results)} results in {repo_id}")
        return results

    def delete_by_files(self, repo_id: str, file_paths: List[str]) -> None:
        """Delete all snippets of the given files.

        Args:
            repo_id: Repository identifier
            file_paths: Files whose snippets should be deleted
        """
        if not file_paths or not self.collection_exists(repo_id):
            return
        try:
            self.client.delete(
                collection_name=collection_name(repo_id),
                points_selector=models.FilterSelector(
                    filter=models.Filter(
                        must=[models.FieldCondition(key="file", match=models.MatchAny(any=list(file_paths)))]
                    )
                ),
            )
            logger.info(f"Deleted snippets of {len(file_paths)} files from {repo_id}")
        except Exception as e:
            logger.error(f"Error deleting snippets: {e}")
            raise

    def drop_repo(self, repo_id: str) -> None:
        """Delete the repository's collection."""
        if not self.collection_exists(repo_id):
            return
        self.client.delete_collection(collection_name=collection_name(repo_id))
        logger.info(f"Dropped collection: {collection_name(repo_id)}")

    def get_collection_stats(self, repo_id: str) -> Dict[str, Any]:
        """Get statistics about a repository's collection.

        Returns:
            Dictionary with collection statistics
        """
        info = self.client.get_collection(collection_name=collection_name(repo_id))
        return {
            "total_points": info.points_count,
            "indexed_vectors_count": info.indexed_vectors_count,
            "status": info.status,
        }

    def health_check(self) -> bool:
        """Check if Qdrant is healthy and accessible.

        Returns:
            True if healthy, False otherwise
        """
        try:
            self.client.get_collections()
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False
