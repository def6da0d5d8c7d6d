import asyncio
import http.client

from bitcoin.rpc import Proxy, JSONRPCError
from loguru import logger

from ..abstract_node import Node, RawTransactionResponse


class ExtendedProxy(Proxy):
    def getrawtransaction_verbose(self, tx_hash: str) -> dict:
        # Proxy.getrawtransaction wants bytes and rebuilds a CTransaction; the importer needs the node's JSON
        return self._call('getrawtransaction', tx_hash, 1)


class BitcoinNode(Node):
    def __init__(self, node_rpc_url: str, timeout: int = 30):
        self.node_rpc_url = node_rpc_url
        self.timeout = timeout
        super().__init__()

    def _proxy(self) -> ExtendedProxy:
        return ExtendedProxy(service_url=self.node_rpc_url, timeout=self.timeout)

    def get_current_block_height(self):
        proxy = self._proxy()
        try:
            return proxy.getblockcount()
        except Exception as e:
            logger.error("RPC Provider with Error", error=str(e))
        finally:
            proxy.close()

    def get_raw_transaction_sync(self, tx_hash: str) -> RawTransactionResponse:
        proxy = None
        try:
            proxy = self._proxy()
            return RawTransactionResponse(result=proxy.getrawtransaction_verbose(tx_hash))
        except JSONRPCError as e:
            error = e.error or {}
            message = f"{error.get('message', 'unknown error')} ({error.get('code')})"
            logger.warning("getrawtransaction returned an error", tx_id=tx_hash, error=message)
            return RawTransactionResponse(error=message)
        except (OSError, ValueError, http.client.HTTPException) as e:
            logger.error("RPC Provider with Error", tx_id=tx_hash, error=str(e))
            return RawTransactionResponse(error=str(e) or e.__class__.__name__)
        finally:
            if proxy is not None:
                proxy.close()

    async def get_raw_transaction(self, tx_hash: str) -> RawTransactionResponse:
        return await asyncio.to_thread(self.get_raw_transaction_sync, tx_hash)
