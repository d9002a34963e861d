"""
Proof Status Client - Опрос статуса запроса в prover network
============================================================

[CLIENT] Высокоуровневый API для вызывающего кода:
- get_status(request_id) -> "pending" | "assigned" | "fulfilled" | "failed"
- Последовательный перебор endpoints (production, затем mainnet)
- Первый успешный ответ побеждает, остальные endpoints не трогаем

[POLICY] Best-effort: ошибки транспорта и декодирования НЕ пробрасываются.
Если все endpoints недоступны - возвращается "pending". Поллер повторит
запрос на следующем тике, а источник истины - сама prover network.
Единственная ошибка, видимая снаружи - InvalidRequestIdError.

[SEQUENTIAL] Endpoints опрашиваются строго по порядку, без параллельного
fan-out: это исключает дублирующие запросы к провайдеру.

[USAGE]
```python
client = ProofStatusClient()
status = await client.get_status("0x1f2e...")
```
"""

import binascii
import logging
import time
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from config import RPC_ENDPOINTS, RPC_METHOD, RPC_TIMEOUT_SECONDS
from core.errors import InvalidRequestIdError
from core.status import DEFAULT_STATUS, translate_status
from core.transport import get_proof_request_status

logger = logging.getLogger(__name__)


# (endpoint, request_id_bytes) -> numeric FulfillmentStatus
StatusQuery = Callable[[str, bytes], Awaitable[int]]


def parse_request_id(request_id: str) -> bytes:
    """
    Преобразовать hex идентификатор запроса в байты.

    Префикс "0x"/"0X" опционален.

    Raises:
        InvalidRequestIdError: Пустая строка или не-hex (включая нечётную длину)
    """
    if not isinstance(request_id, str):
        raise InvalidRequestIdError(f"Request id must be a hex string, got {type(request_id).__name__}")

    clean = request_id.strip()
    if clean[:2] in ("0x", "0X"):
        clean = clean[2:]
    if not clean:
        raise InvalidRequestIdError("Request id is empty")

    try:
        return binascii.unhexlify(clean)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestIdError(f"Request id is not valid hex: {request_id!r}") from e


class ProofStatusClient:
    """
    Оркестратор опроса статуса с failover по endpoints.

    [POLICY] Никогда не поднимает ошибок транспорта: при отказе всех
    endpoints возвращает DEFAULT_STATUS ("pending").
    """

    def __init__(
        self,
        endpoints: Sequence[str] = RPC_ENDPOINTS,
        method: str = RPC_METHOD,
        timeout: float = RPC_TIMEOUT_SECONDS,
        query: Optional[StatusQuery] = None,
    ):
        """
        Args:
            endpoints: Упорядоченный список endpoints (первый - приоритетный)
            method: Путь RPC
            timeout: Ограничение на один endpoint (секунды)
            query: Функция одного запроса к endpoint (для тестов и подмены транспорта)
        """
        self.endpoints = tuple(endpoints)
        self.method = method
        self.timeout = timeout
        self._query: StatusQuery = query or partial(
            get_proof_request_status,
            method=method,
            timeout=timeout,
        )

        self._stats = {
            "queries": 0,
            "answered": 0,
            "endpoint_failures": 0,
            "defaulted": 0,
        }

    async def query_fulfillment_status(self, request_id: bytes) -> Optional[int]:
        """
        Опросить endpoints по порядку.

        Returns:
            Числовой статус от первого ответившего endpoint
            или None если отказали все
        """
        for endpoint in self.endpoints:
            started = time.monotonic()
            try:
                value = await self._query(endpoint, request_id)
            except Exception as e:
                self._stats["endpoint_failures"] += 1
                logger.warning(
                    f"[STATUS] {endpoint} failed after "
                    f"{(time.monotonic() - started) * 1000:.0f}ms: {type(e).__name__}: {e}"
                )
                continue

            logger.debug(f"[STATUS] {endpoint} answered fulfillment_status={value}")
            return value

        return None

    async def get_status(self, request_id: str) -> str:
        """
        Получить метку статуса для hex request id.

        Raises:
            InvalidRequestIdError: До любого сетевого запроса
        """
        id_bytes = parse_request_id(request_id)
        self._stats["queries"] += 1

        value = await self.query_fulfillment_status(id_bytes)
        if value is None:
            self._stats["defaulted"] += 1
            logger.warning(
                f"[STATUS] All {len(self.endpoints)} endpoints failed for "
                f"{request_id[:18]}..., reporting '{DEFAULT_STATUS}'"
            )
            return DEFAULT_STATUS

        self._stats["answered"] += 1
        return translate_status(value)

    def get_stats(self) -> Dict[str, Any]:
        """Статистика клиента."""
        return {
            "endpoints": list(self.endpoints),
            "requests": self._stats.copy(),
        }
