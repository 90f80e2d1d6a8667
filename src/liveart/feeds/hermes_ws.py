from __future__ import annotations

import asyncio
import json
from typing import Optional

import aiohttp
import structlog
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from liveart.config import HermesConfig
from liveart.errors import FeedUnavailable, UnknownFeed
from liveart.feeds import parser
from liveart.feeds.interface import QueuedFeedSource
from liveart.utils.backoff import Backoff, OutageTracker
from liveart.utils.time import utc_now_s
from liveart.utils.types import FeedValue


class HermesFeedSource(QueuedFeedSource):
    """
    Pyth Hermes price service client (websocket stream + HTTP snapshots).

    Lifecycle:
      - Connect -> Subscribe (all watched ids) -> Stream
      - On any error, close and reconnect with jittered backoff (cap)
      - If the upstream stays down for unavailable_after_s, subscribers get a
        FeedUnavailable once; reconnect attempts continue regardless.
      - price_update messages are parsed into FeedValues and put on the
        inbound queue; the dispatch task fans them out to subscribers.

    Snapshots hit GET /v2/updates/price/latest and need no subscription.

    Usage:
        src = HermesFeedSource(HermesConfig(aliases={"BTC/USD": "e62d..."}))
        await src.start()
        v = await src.snapshot("BTC/USD")
        cancel = await src.subscribe("BTC/USD", on_value)
    """

    name = "hermes_feed"

    def __init__(self, cfg: Optional[HermesConfig] = None):
        self.cfg = cfg or HermesConfig()
        super().__init__(queue_maxsize=self.cfg.values_queue_maxsize)
        self._log = structlog.get_logger("hermes_ws")
        self._aliases = {k: parser.normalize_price_id(v) for k, v in self.cfg.aliases.items()}

        self._stop = asyncio.Event()
        self._conn_task: Optional[asyncio.Task] = None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws = None
        self._bg: set[asyncio.Task] = set()

        self._backoff = Backoff(self.cfg.initial_backoff_s, self.cfg.max_backoff_s)
        self._outage = OutageTracker(self.cfg.unavailable_after_s)
        self._last_msg_ts: float = 0.0

        self.connected: bool = False

    # ---------------------------- public API ---------------------------- #

    def normalize(self, feed_id: str) -> str:
        return parser.normalize_price_id(self._aliases.get(feed_id, feed_id))

    def serves(self, feed_id: str) -> bool:
        return parser.is_price_id(self.normalize(feed_id))

    async def start(self) -> None:
        await super().start()
        self._stop.clear()
        if self._conn_task is None or self._conn_task.done():
            self._conn_task = asyncio.create_task(self._run(), name="hermes-ws")

    async def stop(self) -> None:
        self._stop.set()
        if self._ws is not None and hasattr(self._ws, "close"):
            try:
                await self._ws.close()
            except Exception as e:
                self._log.debug("ws_close_failed", err=str(e))
        task, self._conn_task = self._conn_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for t in list(self._bg):
            t.cancel()
        if self._session is not None:
            await self._session.close()
            self._session = None
        self.connected = False
        await super().stop()

    async def snapshot(self, feed_id: str) -> FeedValue:
        if not self.serves(feed_id):
            raise UnknownFeed(feed_id, "not a Hermes price id")
        fid = self.normalize(feed_id)

        for obj in await self._fetch_latest([fid]):
            v = parser.parse_price_feed(obj)
            if v is None or v.feed_id != fid:
                continue
            age = utc_now_s() - v.observed_at
            if age > self.cfg.max_staleness_s:
                raise FeedUnavailable(feed_id, f"stale price ({age:.0f}s old)")
            return v
        raise UnknownFeed(feed_id, "not in Hermes response")

    def healthy(self) -> bool:
        """Quick health signal: connected and not in a reported outage."""
        return self.connected and not self._outage.reported

    def last_message_age_s(self) -> float:
        return max(0.0, utc_now_s() - self._last_msg_ts) if self._last_msg_ts else float("inf")

    # --------------------------- core internals ------------------------- #

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self._connect_and_stream()
                if self._stop.is_set():
                    break
                raise ConnectionError("stream ended")
            except asyncio.CancelledError:
                # allow cooperative shutdown without error
                break
            except Exception as e:
                if self._stop.is_set():
                    break
                self.connected = False
                delay = self._backoff.next_delay()
                self._log.warning("ws_error_reconnect", err=str(e), backoff_s=round(delay, 3))
                if self._outage.failed():
                    self._log.error(
                        "feed_unavailable",
                        feeds=self.subscribed_feeds(),
                        down_s=round(utc_now_s() - (self._outage.down_since or utc_now_s()), 1),
                    )
                    self._report_unavailable(reason=str(e))
                await asyncio.sleep(delay)
        self.connected = False
        self._log.info("ws_loop_exit")

    async def _connect_and_stream(self) -> None:
        """
        Connect, (re)subscribe to every watched id, then stream.
        Returns only on stop() or connection closure.
        """
        self._ws = None
        url = self.cfg.ws_url
        self._log.info("ws_connecting", url=url)
        async with ws_connect(
            url,
            open_timeout=self.cfg.open_timeout_s,
            ping_interval=self.cfg.ping_interval_s,
            max_queue=None,
        ) as ws:
            self._ws = ws
            self.connected = True
            self._backoff.reset()
            if self._outage.reported:
                self._log.info("feed_recovered", feeds=self.subscribed_feeds())
            self._outage.recovered()
            self._last_msg_ts = utc_now_s()

            ids = self.subscribed_feeds()
            if ids:
                await self._send(ws, "subscribe", ids)
            self._log.info("ws_connected", ids=len(ids))

            await self._stream_loop(ws)

    async def _stream_loop(self, ws) -> None:
        while not self._stop.is_set():
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self.cfg.recv_timeout_s)
            except asyncio.TimeoutError:
                if self.subscribed_feeds():
                    self._log.warning("ws_stale_no_messages", age_s=round(self.last_message_age_s(), 3))
                continue
            except ConnectionClosed as e:
                self._log.warning("ws_closed", code=getattr(e, "code", None), reason=str(e))
                raise
            except asyncio.CancelledError:
                # socket closed underneath us or stop requested
                self._log.info("ws_recv_cancelled")
                return

            self._last_msg_ts = utc_now_s()
            try:
                msg = json.loads(raw)
            except ValueError as e:
                self._log.warning("ws_json_error", err=str(e))
                continue

            for m in msg if isinstance(msg, list) else [msg]:
                if not isinstance(m, dict):
                    continue
                value = None
                try:
                    value = parser.parse_price_update(m)
                except (TypeError, ValueError) as e:
                    self._log.warning("parse_price_error", err=str(e), snippet=str(m)[:200])
                if value is not None:
                    if self.is_subscribed(value.feed_id):
                        self._enqueue(value)
                else:
                    self._handle_control(m)

        self._log.info("ws_stream_loop_exit")

    def _handle_control(self, msg: dict) -> None:
        # {"type":"response","status":"success"}
        # {"type":"response","status":"error","error":"Price ids not found: ..."}
        if msg.get("type") == "response" and msg.get("status") == "error":
            self._log.warning("hermes_stream_error", error=msg.get("error"))

    async def _send(self, ws, kind: str, ids: list[str]) -> None:
        await ws.send(json.dumps({"type": kind, "ids": ids}))

    # ------------------------- subscription hooks ----------------------- #

    async def _on_first_subscriber(self, feed_id: str) -> None:
        ws = self._ws
        if ws is None or not self.connected:
            return  # picked up by the next (re)connect
        try:
            await self._send(ws, "subscribe", [feed_id])
        except Exception as e:
            # the reconnect path resubscribes everything
            self._log.warning("ws_subscribe_failed", feed_id=feed_id, err=str(e))

    def _on_last_unsubscribed(self, feed_id: str) -> None:
        ws = self._ws
        if ws is None or not self.connected:
            return
        try:
            t = asyncio.get_running_loop().create_task(self._unsubscribe(ws, feed_id))
        except RuntimeError:
            return
        self._bg.add(t)
        t.add_done_callback(self._bg.discard)

    async def _unsubscribe(self, ws, feed_id: str) -> None:
        try:
            await self._send(ws, "unsubscribe", [feed_id])
        except Exception as e:
            self._log.debug("ws_unsubscribe_failed", feed_id=feed_id, err=str(e))

    # ------------------------------- http -------------------------------- #

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.cfg.http_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _fetch_latest(self, ids: list[str]) -> list[dict]:
        """
        GET /v2/updates/price/latest?ids[]=..&parsed=true -> list of parsed feed objects.
        404/400 "not found" -> UnknownFeed; everything else non-200 -> FeedUnavailable.
        """
        url = f"{self.cfg.http_url.rstrip('/')}/v2/updates/price/latest"
        params = [("ids[]", i) for i in ids] + [("parsed", "true")]
        label = ids[0] if len(ids) == 1 else ",".join(ids)
        session = self._ensure_session()
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 200:
                    data = await resp.json()
                    parsed = data.get("parsed") if isinstance(data, dict) else None
                    return parsed or []
                body = await _maybe_text(resp)
                if resp.status == 404 or (resp.status == 400 and "not found" in body.lower()):
                    raise UnknownFeed(label, body[:200])
                raise FeedUnavailable(label, f"http {resp.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FeedUnavailable(label, str(e) or type(e).__name__) from e


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
