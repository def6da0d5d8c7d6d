import asyncio
import threading
import traceback

from loguru import logger

from src.txgraph._config import ImporterSettings
from src.txgraph.graph.factory import GraphStoreFactory
from src.txgraph.nodes.bitcoin.mapper import BitcoindMapper
from src.txgraph.nodes.bitcoin.node import BitcoinNode
from src.txgraph.status import StatusReporter
from .async_resolver import AsyncResolver
from .block_scanner import BlockScanner
from .resolver import TransactionResolver


class ImporterThread(threading.Thread):
    def __init__(self, settings: ImporterSettings, terminate_event: threading.Event, status: StatusReporter = None,
                 *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.settings = settings
        self.terminate_event = terminate_event
        self.status = status or StatusReporter(settings.STATUS_HISTORY_SIZE)

    async def main(self):
        store = GraphStoreFactory.create_store(self.settings)
        node = BitcoinNode(self.settings.BITCOIN_NODE_RPC_URL, timeout=self.settings.RPC_TIMEOUT)
        mapper = BitcoindMapper(mainnet=self.settings.is_mainnet)
        resolver = TransactionResolver(node, store, mapper=mapper, status=self.status)
        async_resolver = AsyncResolver(
            resolver,
            max_depth=self.settings.MAX_RESOLUTION_DEPTH,
            max_concurrency=self.settings.MAX_CONCURRENT_RESOLUTIONS,
        )
        scanner = BlockScanner(
            store,
            resolver,
            self.status,
            genesis_hashes=self.settings.GENESIS_TRANSACTION_HASHES,
            async_resolver=async_resolver if self.settings.SELF_HEAL_MISSING_REFERENCES else None,
        )

        try:
            await store.init()
            block_height = await asyncio.to_thread(node.get_current_block_height)
            logger.info("Starting transaction import", backend=self.settings.GRAPH_STORE_BACKEND,
                        node_block_height=block_height)
            await scanner.run(
                self.terminate_event,
                initial_delay=self.settings.INITIAL_DELAY,
                pause_between_imports=self.settings.PAUSE_BETWEEN_IMPORTS,
                pause_between_checks=self.settings.PAUSE_BETWEEN_CHECKS,
            )
        except Exception as e:
            tb = traceback.format_exc()
            logger.error("Transaction import stopped", error=e, traceback=tb)
        finally:
            await async_resolver.close()
            await store.close()
            logger.info("Transaction import finished")

    def run(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self.main())
        finally:
            loop.close()
