"""Solana JSON-RPC client: HTTP for the liveness probe, WebSocket pubsub for notifications."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable

import aiohttp
import websockets
import websockets.exceptions

from ..errors import UpstreamError
from ..utils.timeouts import with_timeout
from .base import AccountCallback, AccountInfo, SignatureCallback, SignatureResult


logger = logging.getLogger(__name__)


class SolanaRpcClient:
    """
    Ledger client for a Solana RPC node.

    A single pubsub socket is opened lazily on the first subscription. If it
    drops, pending requests fail with UpstreamError, all server-side
    subscriptions are forgotten and ``on_connection_lost`` is called with the
    error; the next subscribe call reconnects.
    """

    def __init__(
        self,
        http_url: str,
        ws_url: str,
        commitment: str = "confirmed",
        timeout_s: float = 15.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.http_url = http_url
        self.ws_url = ws_url
        self.commitment = commitment
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: dict[int, tuple[asyncio.Future, Callable[[Any], None] | None]] = {}
        self._account_callbacks: dict[int, tuple[str, AccountCallback]] = {}
        self._signature_callbacks: dict[int, tuple[str, SignatureCallback]] = {}
        self._background: set[asyncio.Task] = set()
        self._closing = False
        self.on_connection_lost: Callable[[BaseException], None] | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def get_slot(self) -> int:
        """Liveness probe over HTTP."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "getSlot",
            "params": [{"commitment": self.commitment}],
        }
        session = self._get_session()
        try:
            async with session.post(self.http_url, json=payload) as response:
                if response.status != 200:
                    text = await response.text()
                    raise UpstreamError(f"getSlot HTTP {response.status}: {text[:200]}")
                data = await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise UpstreamError(f"getSlot network error: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"getSlot returned malformed JSON: {e}") from e

        if "error" in data:
            raise UpstreamError(f"getSlot error: {data['error']}")
        return int(data["result"])

    async def on_account_change(self, address: str, callback: AccountCallback) -> int:
        def register(subscription_id: int) -> None:
            self._account_callbacks[subscription_id] = (address, callback)

        return await self._request(
            "accountSubscribe",
            [address, {"encoding": "base64", "commitment": self.commitment}],
            on_result=register,
        )

    def remove_account_change_listener(self, subscription_id: int) -> None:
        if self._account_callbacks.pop(subscription_id, None) is not None:
            self._send_in_background("accountUnsubscribe", subscription_id)

    async def on_signature(self, signature: str, callback: SignatureCallback) -> int:
        def register(subscription_id: int) -> None:
            self._signature_callbacks[subscription_id] = (signature, callback)

        return await self._request(
            "signatureSubscribe",
            [signature, {"commitment": self.commitment}],
            on_result=register,
        )

    def remove_signature_listener(self, subscription_id: int) -> None:
        if self._signature_callbacks.pop(subscription_id, None) is not None:
            self._send_in_background("signatureUnsubscribe", subscription_id)

    async def close(self) -> None:
        """Release the socket, reader task and HTTP session."""
        self._closing = True
        for task in list(self._background):
            task.cancel()
        if self._reader_task is not None:
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)
            self._reader_task = None
        if self._ws is not None:
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing pubsub socket: {e}")
        self._fail_pending(UpstreamError("client closed"))
        self._account_callbacks.clear()
        self._signature_callbacks.clear()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self._ws is not None:
                return
            logger.info(f"Connecting to ledger pubsub: {self.ws_url}")
            try:
                ws = await websockets.connect(
                    self.ws_url,
                    open_timeout=self.timeout_s,
                    close_timeout=10,
                    ping_interval=20,
                    ping_timeout=20,
                    max_size=None,
                )
            except (websockets.exceptions.WebSocketException, asyncio.TimeoutError, OSError) as e:
                raise UpstreamError(f"Pubsub connection failed: {e}") from e
            self._ws = ws
            self._reader_task = asyncio.create_task(self._read_loop(ws), name="ledger-pubsub-reader")
            logger.info("Connected to ledger pubsub.")

    async def _request(self, method: str, params: list, on_result: Callable[[Any], None] | None = None) -> Any:
        await self._ensure_connected()
        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (future, on_result)
        try:
            await self._ws.send(json.dumps({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
                "params": params,
            }))
            return await with_timeout(future, self.timeout_s, method)
        except websockets.exceptions.WebSocketException as e:
            raise UpstreamError(f"{method} send failed: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    def _send_in_background(self, method: str, subscription_id: int) -> None:
        ws = self._ws
        if ws is None:
            # Socket is gone; the server already dropped the subscription
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        message = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": [subscription_id],
        })
        task = loop.create_task(self._send_quietly(ws, message, method))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_quietly(self, ws: Any, message: str, method: str) -> None:
        try:
            await ws.send(message)
        except Exception as e:
            logger.warning(f"{method} could not be sent: {e}")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                try:
                    self._dispatch(json.loads(message))
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse pubsub message: {e}")
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Unexpected pubsub message format: {e}")
                except Exception as e:
                    logger.error(f"Error processing pubsub message: {e}", exc_info=True)
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.WebSocketException as e:
            logger.warning(f"Ledger pubsub connection lost: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in pubsub reader: {e}", exc_info=True)
        finally:
            if self._ws is ws:
                self._ws = None
                self._fail_pending(UpstreamError("pubsub connection closed"))
                # Server-side subscriptions died with the socket
                self._account_callbacks.clear()
                self._signature_callbacks.clear()
                if not self._closing:
                    self._notify_connection_lost(UpstreamError("pubsub connection closed"))

    def _notify_connection_lost(self, error: BaseException) -> None:
        if self.on_connection_lost is None:
            return
        try:
            self.on_connection_lost(error)
        except Exception as e:
            logger.error(f"Connection-lost handler raised: {e}", exc_info=True)

    def _dispatch(self, data: dict) -> None:
        if "id" in data and data.get("id") in self._pending:
            future, on_result = self._pending.pop(data["id"])
            if future.done():
                return
            if "error" in data:
                future.set_exception(UpstreamError(f"RPC error: {data['error']}"))
                return
            result = data.get("result")
            if on_result is not None:
                on_result(result)
            future.set_result(result)
            return

        method = data.get("method")
        if method == "accountNotification":
            params = data["params"]
            entry = self._account_callbacks.get(params["subscription"])
            if entry is None:
                return
            address, callback = entry
            result = params["result"]
            value = result["value"] or {}
            callback(AccountInfo(
                address=address,
                lamports=int(value.get("lamports", 0)),
                owner=value.get("owner", ""),
                data=value.get("data"),
                executable=bool(value.get("executable", False)),
                rent_epoch=value.get("rentEpoch"),
                slot=int(result["context"]["slot"]),
            ))
        elif method == "signatureNotification":
            params = data["params"]
            # Signature subscriptions are single-shot on the server
            entry = self._signature_callbacks.pop(params["subscription"], None)
            if entry is None:
                return
            signature, callback = entry
            result = params["result"]
            value = result["value"]
            err = value.get("err") if isinstance(value, dict) else None
            callback(SignatureResult(signature=signature, err=err, slot=int(result["context"]["slot"])))

    def _fail_pending(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future, _ in pending:
            if not future.done():
                future.set_exception(error)
