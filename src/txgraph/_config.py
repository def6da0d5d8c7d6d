import os
from typing import List, Literal

from dotenv import load_dotenv
from pydantic import ConfigDict
from pydantic_settings import BaseSettings

GENESIS_BLOCK_TRANSACTION_HASH = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"


def load_environment(env: str):
    if env == 'mainnet':
        dotenv_path = os.path.abspath('../env/.env.importer.mainnet')
    elif env == 'testnet':
        dotenv_path = os.path.abspath('../env/.env.importer.testnet')
    else:
        raise ValueError(f"Unknown environment: {env}")

    if os.path.exists(dotenv_path):
        load_dotenv(dotenv_path=dotenv_path)
    else:
        load_dotenv()


class ImporterSettings(BaseSettings):
    GRAPH_STORE_BACKEND: Literal['sql', 'neo4j'] = 'sql'

    DATABASE_URL: str = 'sqlite+aiosqlite:///txgraph.db'

    GRAPH_DATABASE_URL: str = 'bolt://localhost:7687'
    GRAPH_DATABASE_USER: str = 'neo4j'
    GRAPH_DATABASE_PASSWORD: str = ''

    BITCOIN_NODE_RPC_URL: str
    RPC_TIMEOUT: int = 30  # seconds
    # address encoding of outputs whose script carries no reported address
    BITCOIN_NETWORK: Literal['mainnet', 'testnet'] = 'mainnet'

    # scanner cadence, seconds
    INITIAL_DELAY: float = 3.0
    PAUSE_BETWEEN_IMPORTS: float = 0.1
    PAUSE_BETWEEN_CHECKS: float = 1.0

    # coinbase transactions of the genesis block, not served by getrawtransaction.
    # Block lists written by the legacy importer carry a second reserved placeholder;
    # deployments reading those lists must add it here.
    GENESIS_TRANSACTION_HASHES: List[str] = [GENESIS_BLOCK_TRANSACTION_HASH]

    SELF_HEAL_MISSING_REFERENCES: bool = True
    MAX_RESOLUTION_DEPTH: int = 64
    MAX_CONCURRENT_RESOLUTIONS: int = 8

    STATUS_HISTORY_SIZE: int = 1000

    @property
    def is_mainnet(self) -> bool:
        return self.BITCOIN_NETWORK == 'mainnet'

    model_config = ConfigDict(
        extra='ignore',
        frozen=True
    )
