"""
Connectivity signal for the offline client.

A provider answers ``is_online()`` synchronously and notifies subscribers on
every online/offline transition. Host applications that already own a
platform network signal feed it into :class:`ManualConnectivity`; headless
clients use :class:`ProbeConnectivity`, which polls the remote service host
with a TCP connect.
"""

import asyncio
import logging
from typing import Callable, Protocol
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ConnectivityCallback = Callable[[bool], None]


class ConnectivityProvider(Protocol):
    def is_online(self) -> bool: ...

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]: ...


class _Broadcaster:
    def __init__(self, online: bool) -> None:
        self._online = online
        self._callbacks: list[ConnectivityCallback] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: ConnectivityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _update(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Network %s", "online" if online else "offline")
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception:
                logger.exception("Connectivity callback failed")


class ManualConnectivity(_Broadcaster):
    def __init__(self, online: bool = True) -> None:
        super().__init__(online)

    def set_online(self, online: bool) -> None:
        self._update(online)


class ProbeConnectivity(_Broadcaster):
    def __init__(self, url: str, interval: float = 15.0, timeout: float = 3.0, online: bool = True) -> None:
        super().__init__(online)
        parsed = urlparse(url)
        self._host = parsed.hostname or "localhost"
        self._port = parsed.port or (443 if parsed.scheme == "https" else 80)
        self._interval = interval
        self._timeout = timeout
        self._task: asyncio.Task | None = None

    async def probe(self) -> bool:
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(self._host, self._port), self._timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("Probe to %s:%d failed: %s", self._host, self._port, exc)
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug("Probe connection to %s:%d closed uncleanly: %s", self._host, self._port, exc)
        return True

    async def check_now(self) -> bool:
        self._update(await self.probe())
        return self._online

    async def _loop(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
