"""Environment configuration and logging setup shared by the HTTP and MCP servers."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


def get_env_config() -> Dict[str, Any]:
    """Get configuration from environment variables."""
    return {
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_file": os.getenv("LOG_FILE"),
        "qdrant_host": os.getenv("QDRANT_HOST", "localhost"),
        "qdrant_port": int(os.getenv("QDRANT_PORT", "6333")),
        "enable_vector_db": _env_flag("ENABLE_VECTOR_DB"),
        "enable_graph_db": _env_flag("ENABLE_GRAPH_DB"),
        "graph_db_uri": os.getenv("GRAPH_DB_URI", "bolt://localhost:7687"),
        "graph_db_user": os.getenv("GRAPH_DB_USER", ""),
        "graph_db_password": os.getenv("GRAPH_DB_PASSWORD", ""),
        "voyage_api_key": os.getenv("VOYAGE_API_KEY"),
        "voyage_api_url": os.getenv("VOYAGE_API_URL", "https://api.voyageai.com/v1/embeddings"),
        "embedding_model": os.getenv("EMBEDDING_MODEL", "voyage-code-3"),
        "embedding_concurrency": int(os.getenv("EMBEDDING_CONCURRENCY", "3")),
        "cache_path": Path(os.getenv("CACHE_PATH")) if os.getenv("CACHE_PATH") else None,
        "index_path": Path(os.getenv("INDEX_PATH", "./.index")),
        "clone_dir": Path(os.getenv("CLONE_DIR", "/tmp/codebase-index-repos")),
        "parse_workers": int(os.getenv("PARSE_WORKERS", "4")),
        "bitbucket_api_url": os.getenv("BITBUCKET_API_URL", "https://api.bitbucket.org/2.0"),
        "api_host": os.getenv("API_HOST", "0.0.0.0"),
        "api_port": int(os.getenv("API_PORT", "3000")),
    }


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger with a console handler and an optional file handler.

    Args:
        log_level: Level name applied to the root logger and its handlers
        log_file: Path of a log file, or None for console only
    """
    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler (for container logs)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
