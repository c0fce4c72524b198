"""Neo4j/Memgraph client for the code knowledge graph.

Nodes are stored under their label (File, Function, Class) and keyed by the
opaque node id. Every node and relationship carries ``repo_id``; nodes carry
the ``file`` they were derived from and relationships the ``origin`` file
that owns them, so a changed file can be replaced without touching the rest
of the repository.
"""

import logging
from typing import Any, Dict, List, Tuple

from neo4j import GraphDatabase
from neo4j.exceptions import AuthError, ServiceUnavailable

from ..indexer.models import GraphLink, GraphNode

logger = logging.getLogger(__name__)

BATCH_SIZE = 200

NODE_LABELS = ("File", "Function", "Class")
LINK_TYPES = ("CONTAINS", "HAS_METHOD", "CALLS", "IMPORTS", "EXTENDS", "IMPLEMENTS")

# Node properties that are not part of GraphNode.attributes
RESERVED_NODE_PROPERTIES = {"id", "key", "label", "name", "file", "repo_id"}


def _batches(items: List[Any], size: int = BATCH_SIZE):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class CodeGraphDB:
    """Neo4j client for the per-repository code graph.

    Works against Neo4j or Memgraph through the Bolt protocol.
    """

    def __init__(self, uri: str, user: str, password: str):
        """Initialize the Bolt connection.

        Args:
            uri: Connection URI (e.g., "bolt://localhost:7687")
            user: Username
            password: Password
        """
        self.uri = uri
        self.user = user
        self.driver = None

        try:
            self.driver = GraphDatabase.driver(uri, auth=(user, password))
            logger.info(f"Connected to graph database at {uri}")
        except (ServiceUnavailable, AuthError) as e:
            logger.error(f"Failed to connect to graph database: {e}")
            raise

    def close(self):
        """Close the connection."""
        if self.driver:
            self.driver.close()
            logger.info("Graph database connection closed")

    def verify_connectivity(self) -> bool:
        """Verify the connection.

        Returns:
            True if connection is successful, False otherwise
        """
        try:
            with self.driver.session() as session:
                result = session.run("RETURN 1 AS result")
                return result.single()["result"] == 1
        except Exception as e:
            logger.error(f"Graph database connectivity check failed: {e}")
            return False

    def create_indexes(self):
        """Create indexes for frequently queried properties."""
        indexes = []
        for label in NODE_LABELS:
            indexes.append(f"CREATE INDEX {label.lower()}_id IF NOT EXISTS FOR (n:{label}) ON (n.id)")
            indexes.append(f"CREATE INDEX {label.lower()}_repo IF NOT EXISTS FOR (n:{label}) ON (n.repo_id)")
        indexes.append("CREATE INDEX file_file IF NOT EXISTS FOR (n:File) ON (n.file)")

        with self.driver.session() as session:
            for index_query in indexes:
                try:
                    session.run(index_query)
                    logger.debug(f"Created index: {index_query}")
                except Exception as e:
                    logger.warning(f"Index creation warning: {e}")

    def _write_nodes(self, session, repo_id: str, nodes: List[GraphNode]) -> None:
        nodes_by_label: Dict[str, List[Dict[str, Any]]] = {}
        for node in nodes:
            if node.label not in NODE_LABELS:
                raise ValueError(f"Unknown node label: {node.label}")
            properties = dict(node.attributes)
            properties.update({"key": node.key, "name": node.name, "file": node.file,
                               "label": node.label, "repo_id": repo_id})
            nodes_by_label.setdefault(node.label, []).append({"id": node.id, "properties": properties})

        for label, label_nodes in nodes_by_label.items():
            query = f"""
            UNWIND $nodes AS node
            MERGE (n:{label} {{id: node.id}})
            SET n += node.properties
            """
            for batch in _batches(label_nodes):
                session.run(query, nodes=batch)

    def _write_links(self, session, repo_id: str, links: List[GraphLink]) -> None:
        links_by_type: Dict[str, List[Dict[str, Any]]] = {}
        for link in links:
            if link.type not in LINK_TYPES:
                raise ValueError(f"Unknown relationship type: {link.type}")
            properties = {"origin": link.origin, "repo_id": repo_id}
            if link.weight is not None:
                properties["weight"] = link.weight
            if link.line is not None:
                properties["line"] = link.line
            if link.symbols:
                properties["symbols"] = list(link.symbols)
            links_by_type.setdefault(link.type, []).append(
                {"source_id": link.source, "target_id": link.target, "properties": properties}
            )

        for rel_type, type_links in links_by_type.items():
            # Links whose target is gone simply do not match and are skipped
            query = f"""
            UNWIND $rels AS rel
            MATCH (source {{id: rel.source_id, repo_id: $repo_id}})
            MATCH (target {{id: rel.target_id, repo_id: $repo_id}})
            MERGE (source)-[r:{rel_type}]->(target)
            SET r += rel.properties
            """
            for batch in _batches(type_links):
                session.run(query, rels=batch, repo_id=repo_id)

    def replace_repo(self, repo_id: str, nodes: List[GraphNode], links: List[GraphLink]) -> None:
        """Replace everything stored for a repository.

        Args:
            repo_id: Repository identifier
            nodes: Complete node set
            links: Complete link set
        """
        self.clear_repo(repo_id)
        with self.driver.session() as session:
            self._write_nodes(session, repo_id, nodes)
            self._write_links(session, repo_id, links)
        logger.info(f"Stored graph for {repo_id}: {len(nodes)} nodes, {len(links)} relationships")

    def merge_files(
        self,
        repo_id: str,
        paths: List[str],
        nodes: List[GraphNode],
        links: List[GraphLink],
    ) -> None:
        """Replace the nodes and relationships owned by the given files.

        Nodes that survive the change keep their id and therefore keep the
        relationships other files hold to them.

        Args:
            repo_id: Repository identifier
            paths: Changed files, including deleted ones
            nodes: New nodes owned by the changed files
            links: New relationships owned by the changed files
        """
        keep_ids = [n.id for n in nodes]
        with self.driver.session() as session:
            session.run(
                """
                MATCH ()-[r {repo_id: $repo_id}]->()
                WHERE r.origin IN $paths
                DELETE r
                """,
                repo_id=repo_id,
                paths=paths,
            )
            result = session.run(
                """
                MATCH (n {repo_id: $repo_id})
                WHERE n.file IN $paths AND NOT n.id IN $keep_ids
                DETACH DELETE n
                """,
                repo_id=repo_id,
                paths=paths,
                keep_ids=keep_ids,
            )
            deleted_count = result.consume().counters.nodes_deleted
            self._write_nodes(session, repo_id, nodes)
            self._write_links(session, repo_id, links)
        logger.info(f"Merged {len(paths)} files into {repo_id}; removed {deleted_count} stale nodes")

    def clear_repo(self, repo_id: str) -> None:
        """Delete all nodes and relationships of a repository."""
        with self.driver.session() as session:
            session.run("MATCH (n {repo_id: $repo_id}) DETACH DELETE n", repo_id=repo_id)
        logger.info(f"Cleared graph data for repository: {repo_id}")

    def list_repos(self) -> List[str]:
        """Repository ids that have at least one stored file."""
        with self.driver.session() as session:
            result = session.run("MATCH (f:File) RETURN DISTINCT f.repo_id AS repo_id ORDER BY repo_id")
            return [record["repo_id"] for record in result if record["repo_id"]]

    def load_graph(self, repo_id: str) -> Tuple[List[GraphNode], List[GraphLink]]:
        """Read back every node and relationship of a repository.

        Returns:
            Tuple of (nodes, links)
        """
        nodes: List[GraphNode] = []
        links: List[GraphLink] = []
        with self.driver.session() as session:
            for record in session.run("MATCH (n {repo_id: $repo_id}) RETURN n", repo_id=repo_id):
                props = dict(record["n"])
                nodes.append(
                    GraphNode(
                        id=props["id"],
                        key=props.get("key", ""),
                        label=props.get("label", ""),
                        name=props.get("name", ""),
                        file=props.get("file", ""),
                        attributes={k: v for k, v in props.items() if k not in RESERVED_NODE_PROPERTIES},
                    )
                )

            rel_query = """
            MATCH (a {repo_id: $repo_id})-[r]->(b {repo_id: $repo_id})
            RETURN a.id AS source, b.id AS target, type(r) AS type, r
            """
            for record in session.run(rel_query, repo_id=repo_id):
                props = dict(record["r"])
                links.append(
                    GraphLink(
                        source=record["source"],
                        target=record["target"],
                        type=record["type"],
                        origin=props.get("origin", ""),
                        weight=props.get("weight"),
                        line=props.get("line"),
                        symbols=props.get("symbols"),
                    )
                )
        logger.info(f"Loaded graph for {repo_id}: {len(nodes)} nodes, {len(links)} relationships")
        return nodes, links

    def get_statistics(self) -> Dict[str, Any]:
        """Get graph database statistics.

        Returns:
            Dictionary with node counts and relationship counts
        """
        with self.driver.session() as session:
            node_counts = session.run("MATCH (n) RETURN labels(n)[0] AS label, count(*) AS count")
            nodes_by_label = {record["label"]: record["count"] for record in node_counts}
            rel_counts = session.run("MATCH ()-[r]->() RETURN type(r) AS type, count(*) AS count")
            return {
                "nodes_by_label": nodes_by_label,
                "relationships_by_type": {record["type"]: record["count"] for record in rel_counts},
            }

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
