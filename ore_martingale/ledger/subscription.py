"""
Real-time mirror of our Miner account over the Solana websocket API.

A single background worker owns the connection: it connects, subscribes to the
miner address, streams notifications into the latest snapshot and reconnects
with exponential backoff whenever the stream drops. Everyone else only reads
the snapshot, or waits on it with a deadline via wait_for_update().
"""

import asyncio
import base64
import binascii
import json
import logging
import threading
from enum import Enum
from typing import Callable, Optional

import aiohttp
from solders.pubkey import Pubkey

from ore_martingale.errors import DecodeError
from ore_martingale.ledger.state import Miner, lamports_to_sol, ore_units_to_ore

logger = logging.getLogger(__name__)


class SyncState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"


def to_ws_url(rpc_url: str) -> str:
    return rpc_url.replace("https://", "wss://").replace("http://", "ws://")


class MinerSubscription:
    INITIAL_RETRY_DELAY = 1.0
    MAX_RETRY_DELAY = 60.0
    KEEPALIVE_INTERVAL = 30.0
    POLL_INTERVAL = 0.1

    def __init__(self, ws_url: str, miner_address: Pubkey,
                 session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession):
        self.ws_url = ws_url
        self.miner_address = miner_address
        self.state = SyncState.DISCONNECTED
        self._session_factory = session_factory
        self._miner: Optional[Miner] = None
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker(), name="miner-subscription")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.state = SyncState.DISCONNECTED

    def get_miner(self) -> Optional[Miner]:
        """Latest snapshot pushed by the worker, None before the first notification."""
        with self._lock:
            return self._miner

    def _store(self, miner: Miner):
        with self._lock:
            self._miner = miner

    async def wait_for_update(self, baseline: int, timeout: float) -> Optional[Miner]:
        """
        Poll the snapshot until rewards_sol exceeds `baseline`.

        Returns the updated Miner, or None if nothing arrived within `timeout`
        seconds. Callers fall back to a direct RPC read on None.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            miner = self.get_miner()
            if miner is not None and miner.rewards_sol > baseline:
                return miner
            await asyncio.sleep(self.POLL_INTERVAL)
        return None

    def subscribe_request(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "accountSubscribe",
            "params": [
                str(self.miner_address),
                {"encoding": "base64", "commitment": "confirmed"},
            ],
        }

    def handle_message(self, text: str) -> Optional[Miner]:
        """Decode one websocket frame; store and return the Miner if it carried one."""
        try:
            message = json.loads(text)
        except ValueError:
            logger.debug("Ignoring non-JSON websocket frame: %s", text)
            return None

        if not isinstance(message, dict):
            logger.debug("Ignoring unexpected websocket frame: %s", text)
            return None

        if message.get("method") != "accountNotification":
            logger.debug("WebSocket message: %s", text)
            return None

        try:
            encoded = message["params"]["result"]["value"]["data"][0]
            miner = Miner.decode(base64.b64decode(encoded))
        except (KeyError, IndexError, TypeError, binascii.Error, DecodeError) as e:
            logger.warning("Failed to parse miner notification: %s", e)
            return None

        logger.info(
            "WebSocket update: rewards_sol = %.6f SOL, rewards_ore = %.6f ORE",
            lamports_to_sol(miner.rewards_sol),
            ore_units_to_ore(miner.rewards_ore),
        )
        self._store(miner)
        return miner

    async def _worker(self):
        retry_delay = self.INITIAL_RETRY_DELAY

        async with self._session_factory() as session:
            while True:
                self.state = SyncState.CONNECTING
                logger.info("Attempting WebSocket connection to %s", self.ws_url)
                try:
                    async with session.ws_connect(self.ws_url,
                                                  heartbeat=self.KEEPALIVE_INTERVAL) as ws:
                        logger.info("WebSocket connected")
                        retry_delay = self.INITIAL_RETRY_DELAY

                        await ws.send_json(self.subscribe_request())
                        self.state = SyncState.SUBSCRIBED
                        logger.info("Subscribed to miner account: %s", self.miner_address)

                        await self._stream(ws)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                    logger.error("WebSocket failure: %s. Retrying in %.1fs...", e, retry_delay)
                except Exception:
                    logger.exception("Unexpected WebSocket worker failure. Retrying in %.1fs...",
                                     retry_delay)

                self.state = SyncState.DISCONNECTED
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, self.MAX_RETRY_DELAY)
                logger.warning("Attempting WebSocket reconnection...")

    async def _stream(self, ws):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.state = SyncState.STREAMING
                self.handle_message(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("WebSocket error: %s", ws.exception())
                return
        logger.warning("WebSocket closed by server")
