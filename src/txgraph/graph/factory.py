from src.txgraph._config import ImporterSettings
from src.txgraph.graph import GraphStore
from src.txgraph.graph.neo4j_store import Neo4jGraphStore
from src.txgraph.graph.sql_store import SqlGraphStore


class GraphStoreFactory:
    @classmethod
    def create_store(cls, settings: ImporterSettings) -> GraphStore:
        if settings.GRAPH_STORE_BACKEND == 'sql':
            return SqlGraphStore(settings.DATABASE_URL)

        if settings.GRAPH_STORE_BACKEND == 'neo4j':
            return Neo4jGraphStore(
                settings.GRAPH_DATABASE_URL,
                settings.GRAPH_DATABASE_USER,
                settings.GRAPH_DATABASE_PASSWORD,
            )

        raise ValueError(f"Unsupported graph store backend: {settings.GRAPH_STORE_BACKEND}")
