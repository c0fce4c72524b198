"""MCP tool for semantic code search."""

import asyncio
import logging
from typing import Optional

from ..indexer.embeddings import VoyageEmbeddings
from ..resilience.breakers import QDRANT, BreakerRegistry, get_breaker_registry
from ..vector_db.qdrant_client import CodeVectorDB

logger = logging.getLogger(__name__)


class SearchTool:
    """Tool for semantic code search within one indexed repository."""

    def __init__(
        self,
        vector_db: Optional[CodeVectorDB],
        embeddings: Optional[VoyageEmbeddings],
        breakers: Optional[BreakerRegistry] = None,
    ):
        """Initialize search tool.

        Args:
            vector_db: Vector database client (None when disabled)
            embeddings: Embeddings client (None when disabled)
            breakers: Breaker registry (defaults to the shared one)
        """
        self.vector_db = vector_db
        self.embeddings = embeddings
        self.breakers = breakers or get_breaker_registry()

    async def search_code(
        self,
        repo_id: str,
        query: str,
        limit: int = 10,
        file_path: Optional[str] = None,
    ) -> dict:
        """Search a repository's snippets with a natural language or code query.

        Args:
            repo_id: Repository to search
            query: Search query
            limit: Maximum number of results to return (default: 10)
            file_path: Only return snippets from this file

        Returns:
            Dictionary with search results
        """
        if self.vector_db is None or self.embeddings is None or not self.embeddings.configured:
            return {"success": False, "error": "Semantic search is not configured"}

        try:
            logger.info(f"Searching {repo_id} for: {query}")
            breaker = self.breakers.get(QDRANT)
            exists = await asyncio.to_thread(breaker.call_sync, self.vector_db.collection_exists, repo_id)
            if not exists:
                # Skip the embedding request when there is nothing to search
                return {"success": True, "query": query, "total_results": 0, "results": []}

            query_vector = await self.embeddings.embed_query(query)
            results = await asyncio.to_thread(
                breaker.call_sync, self.vector_db.search, repo_id, query_vector, limit, file_path
            )

            formatted_results = []
            for i, result in enumerate(results, 1):
                formatted_results.append(
                    {
                        "rank": i,
                        "score": round(result["score"], 4),
                        "name": result["name"],
                        "file": result["file"],
                        "lines": f"{result['startLine']}-{result['endLine']}",
                        "code": result["codePreview"],
                    }
                )

            return {
                "success": True,
                "query": query,
                "total_results": len(formatted_results),
                "results": formatted_results,
            }

        except Exception as e:
            logger.error(f"Error during search: {e}")
            return {"success": False, "error": str(e)}
