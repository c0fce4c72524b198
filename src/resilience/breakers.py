"""Named circuit breakers for every external service, and the degradation mode derived from them."""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from .circuit_breaker import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)

OPENROUTER = "openrouter"
VOYAGE = "voyage-ai"
BITBUCKET = "bitbucket"
QDRANT = "qdrant"
MEMGRAPH = "memgraph"

# name -> (failure_threshold, reset_timeout, monitor_window); seconds.
# LLM and embedding APIs tolerate more transient failures; stores recover fast.
BREAKER_SETTINGS = {
    OPENROUTER: (8, 60.0, 120.0),
    VOYAGE: (5, 45.0, 90.0),
    BITBUCKET: (5, 30.0, 60.0),
    QDRANT: (3, 15.0, 30.0),
    MEMGRAPH: (3, 15.0, 30.0),
}


@dataclass
class DegradationMode:
    """Capabilities currently unavailable."""

    no_graph: bool = False  # skip graph queries
    no_vectors: bool = False  # skip vector similarity
    slow_llm: bool = False  # use a cheaper model
    no_embeddings: bool = False  # skip embedding generation
    no_bitbucket: bool = False  # skip comment posting

    @property
    def degraded(self) -> bool:
        return any(asdict(self).values())

    def to_dict(self) -> Dict[str, bool]:
        return {
            "noGraph": self.no_graph,
            "noVectors": self.no_vectors,
            "slowLlm": self.slow_llm,
            "noEmbeddings": self.no_embeddings,
            "noBitbucket": self.no_bitbucket,
        }


class BreakerRegistry:
    """Owns one CircuitBreaker per external service."""

    def __init__(self):
        self.breakers: Dict[str, CircuitBreaker] = {
            name: CircuitBreaker(name, failure_threshold=threshold, reset_timeout=reset, monitor_window=window)
            for name, (threshold, reset, window) in BREAKER_SETTINGS.items()
        }

    def get(self, name: str) -> CircuitBreaker:
        return self.breakers[name]

    def get_states(self) -> Dict[str, Dict]:
        """Summary of every breaker as ``{name: {state, failures}}``."""
        result = {}
        for name, breaker in self.breakers.items():
            stats = breaker.get_stats()
            result[name] = {"state": stats["state"], "failures": stats["failures"]}
        return result

    def get_degradation_mode(
        self,
        voyage_api_key: Optional[str] = None,
        llm_configured: bool = False,
    ) -> DegradationMode:
        """Derive which capabilities are unavailable right now.

        Args:
            voyage_api_key: Embedding API key; embeddings are off without one
            llm_configured: Whether an LLM provider is configured for review agents
        """
        mode = DegradationMode(
            no_graph=self.breakers[MEMGRAPH].state == CircuitState.OPEN,
            no_vectors=self.breakers[QDRANT].state == CircuitState.OPEN,
            slow_llm=self.breakers[OPENROUTER].state == CircuitState.OPEN or not llm_configured,
            no_embeddings=self.breakers[VOYAGE].state == CircuitState.OPEN or not voyage_api_key,
            no_bitbucket=self.breakers[BITBUCKET].state == CircuitState.OPEN,
        )
        if mode.no_graph or mode.no_vectors or mode.no_embeddings:
            logger.warning(f"Running in degraded mode: {mode.to_dict()}")
        return mode


# Global registry instance
_registry: Optional[BreakerRegistry] = None


def get_breaker_registry() -> BreakerRegistry:
    """Get the global breaker registry instance."""
    global _registry
    if _registry is None:
        _registry = BreakerRegistry()
    return _registry
