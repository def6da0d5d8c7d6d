import asyncio
import signal
import sys
import threading
from typing import List

from loguru import logger

from src.txgraph import VERSION
from src.txgraph._config import load_environment, ImporterSettings
from src.txgraph.graph.factory import GraphStoreFactory
from src.txgraph.importer import AsyncResolver, TransactionResolver
from src.txgraph.importer.importer_thread import ImporterThread
from src.txgraph.logger import setup_logger
from src.txgraph.nodes.bitcoin.mapper import BitcoindMapper
from src.txgraph.nodes.bitcoin.node import BitcoinNode
from src.txgraph.status import StatusReporter

USAGE = "Usage: python -m src.txgraph.cli <environment> scan | resolve <txid> [<txid> ...]"


def scan(settings: ImporterSettings):
    terminate_event = threading.Event()

    def shutdown_handler(signal_num, frame):
        logger.info("Received shutdown signal, stopping...")
        terminate_event.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    importer_thread = ImporterThread(settings=settings, terminate_event=terminate_event, name="importer")
    importer_thread.start()
    importer_thread.join()
    logger.info("Importer stopped successfully.")


async def resolve(settings: ImporterSettings, tx_hashes: List[str]) -> bool:
    store = GraphStoreFactory.create_store(settings)
    node = BitcoinNode(settings.BITCOIN_NODE_RPC_URL, timeout=settings.RPC_TIMEOUT)
    status = StatusReporter(settings.STATUS_HISTORY_SIZE)
    async_resolver = AsyncResolver(
        TransactionResolver(node, store, mapper=BitcoindMapper(mainnet=settings.is_mainnet), status=status),
        max_depth=settings.MAX_RESOLUTION_DEPTH,
        max_concurrency=settings.MAX_CONCURRENT_RESOLUTIONS,
    )
    try:
        await store.init()
        results = await asyncio.gather(*[async_resolver.create_transaction(tx_hash) for tx_hash in tx_hashes])
    finally:
        await async_resolver.close()
        await store.close()

    for result in results:
        if result.ok:
            print(f"{result.tx_hash}: {len(result.transaction.inputs)} inputs, "
                  f"{len(result.transaction.outputs)} outputs")
        else:
            print(f"{result.tx_hash}: FAILED {result.error}")
    return all(result.ok for result in results)


if __name__ == "__main__":

    if len(sys.argv) < 3 or sys.argv[2] not in ("scan", "resolve") or (sys.argv[2] == "resolve" and len(sys.argv) < 4):
        print(USAGE)
        sys.exit(1)

    environment, command = sys.argv[1], sys.argv[2]
    load_environment(environment)
    settings = ImporterSettings()

    setup_logger(service="txgraph-importer")
    logger.info("txgraph", version=VERSION, environment=environment, command=command)

    if command == "scan":
        scan(settings)
    else:
        succeeded = asyncio.run(resolve(settings, sys.argv[3:]))
        sys.exit(0 if succeeded else 2)
