"""
Status Poller - Периодический опрос статуса
===========================================

[POLL] Один запрос за тик, следующий тик только после ответа.
Тики независимы: каждый использует своё соединение.

Остановка:
- терминальный статус (fulfilled / failed)
- достигнут max_polls
- stop()
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from config import POLL_INTERVAL
from core.status import DEFAULT_STATUS, is_terminal

logger = logging.getLogger(__name__)


# (label, attempt) -> None | Awaitable
UpdateCallback = Callable[[str, int], Any]


class StatusPoller:
    """
    Опрос статуса с фиксированным интервалом.

    [USAGE]
    ```python
    poller = StatusPoller(client, interval=15.0)
    final = await poller.watch(request_id)
    ```
    """

    def __init__(
        self,
        client,
        interval: float = POLL_INTERVAL,
        max_polls: Optional[int] = None,
        on_update: Optional[UpdateCallback] = None,
    ):
        if interval < 0:
            raise ValueError(f"Poll interval must be non-negative: {interval}")
        self.client = client
        self.interval = interval
        self.max_polls = max_polls or None
        self.on_update = on_update

        self.attempts = 0
        self.last_status: Optional[str] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        """
        Остановить опрос после текущего тика.

        Окончательно: stop() до watch() тоже учитывается, watch() сделает
        один запрос и вернёт его результат.
        """
        self._stop_event.set()

    async def watch(self, request_id: str) -> str:
        """
        Опрашивать до терминального статуса.

        Returns:
            Последний полученный статус

        Raises:
            InvalidRequestIdError: На первом тике, до сетевых запросов
        """
        self.attempts = 0
        self.last_status = None

        while True:
            self.attempts += 1
            status = await self.client.get_status(request_id)

            if status != self.last_status:
                logger.info(f"[POLL] {request_id[:18]}... -> {status} (attempt {self.attempts})")
                self.last_status = status
                await self._notify(status)

            if is_terminal(status):
                return status
            if self.max_polls is not None and self.attempts >= self.max_polls:
                logger.info(f"[POLL] Giving up after {self.attempts} polls, last status: {status}")
                return status
            if self._stop_event.is_set():
                return status

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                return self.last_status or DEFAULT_STATUS
            except asyncio.TimeoutError:
                pass

    async def _notify(self, status: str) -> None:
        if self.on_update is None:
            return
        result = self.on_update(status, self.attempts)
        if inspect.isawaitable(result):
            await result
