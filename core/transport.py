"""
Transport Session - Unary gRPC вызов поверх HTTP/2
==================================================

[TRANSPORT] Одна сессия = одно HTTP/2 соединение = один unary вызов:
1. CONNECTING: TCP (+ TLS с ALPN h2 для https://)
2. REQUESTING: HEADERS (POST, application/grpc, te: trailers) + DATA фрейм
3. AWAITING_RESPONSE: сбор DATA до END_STREAM, чтение grpc-status
4. COMPLETE

FAILED достижим из любого состояния.

[STATUS] grpc-status может прийти в заголовках ответа (Trailers-Only,
немедленная ошибка) или в trailers после тела. Trailers всегда
переопределяют заголовки: они приходят последними и отражают итог вызова.

[TIMEOUT] Весь round-trip ограничен `timeout`, включая закрытие соединения.
По истечении поток отменяется (RST_STREAM CANCEL), сокет обрывается
(abort, без ожидания TLS close_notify), и поднимается RpcTimeoutError.

[RESOURCES] Соединение закрывается на любом пути выхода. После ошибки -
жёсткий abort. После успешного ответа - GOAWAY и мягкое закрытие, но не
дольше остатка бюджета и CLOSE_TIMEOUT_SECONDS. Пула нет: каждый запрос
владеет своим соединением.

[USAGE]
    session = GrpcSession("https://rpc.production.succinct.xyz", RPC_METHOD)
    body = await session.unary_call(encode_bytes_field(1, request_id))
"""

import asyncio
import logging
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple
from urllib.parse import unquote, urlsplit

from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    ResponseReceived,
    StreamEnded,
    StreamReset,
    TrailersReceived,
)
from h2.exceptions import ProtocolError

from config import RPC_METHOD, RPC_TIMEOUT_SECONDS
from core.errors import (
    ConnectError,
    EmptyResponseError,
    RpcStatusError,
    RpcTimeoutError,
)
from core.wire import (
    FRAME_HEADER_SIZE,
    decode_varint_field,
    encode_bytes_field,
    frame,
    unframe,
)

logger = logging.getLogger(__name__)


# Размер чтения из сокета
READ_CHUNK_SIZE = 65536

# Заголовок фрейма + минимум одна пара tag/value
MIN_RESPONSE_SIZE = FRAME_HEADER_SIZE + 2

GRPC_STATUS_OK = 0

# Верхняя граница мягкого закрытия (TLS close_notify от peer)
CLOSE_TIMEOUT_SECONDS = 1.0

# Поле request_id в GetProofRequestStatusRequest
REQUEST_ID_FIELD = 1


class SessionState(Enum):
    """Состояния транспортной сессии."""
    CONNECTING = "connecting"
    REQUESTING = "requesting"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class GrpcStatus:
    """
    Наблюдаемый gRPC статус вызова.

    [STATUS] Явный приоритет: trailer_code, если он был получен,
    иначе header_code. Порядок доставки событий не влияет на результат.
    """

    http_status: Optional[int] = None
    header_code: Optional[int] = None
    trailer_code: Optional[int] = None
    message: str = ""
    invalid: bool = False

    def observe_headers(self, headers: Iterable[Tuple[str, str]]) -> None:
        for name, value in headers:
            if name == ":status":
                try:
                    self.http_status = int(value)
                except ValueError:
                    self.invalid = True
        code = self._extract(headers)
        if code is not None:
            self.header_code = code

    def observe_trailers(self, headers: Iterable[Tuple[str, str]]) -> None:
        code = self._extract(headers)
        if code is not None:
            self.trailer_code = code

    def _extract(self, headers: Iterable[Tuple[str, str]]) -> Optional[int]:
        code = None
        for name, value in headers:
            if name == "grpc-status":
                try:
                    code = int(value.strip())
                except ValueError:
                    self.invalid = True
            elif name == "grpc-message":
                self.message = unquote(value)
        return code

    @property
    def code(self) -> Optional[int]:
        if self.trailer_code is not None:
            return self.trailer_code
        return self.header_code

    @property
    def ok(self) -> bool:
        return not self.invalid and self.code == GRPC_STATUS_OK

    def raise_for_status(self) -> None:
        """Поднять RpcStatusError если вызов не завершился с OK."""
        if self.ok:
            return
        message = self.message
        if self.code is None and self.http_status not in (None, 200):
            message = message or f"HTTP {self.http_status}"
        raise RpcStatusError(None if self.invalid else self.code, message)


def _parse_endpoint(endpoint: str) -> Tuple[str, str, int, str]:
    """
    Разобрать URL endpoint.

    Returns:
        (scheme, host, port, authority)
    """
    parts = urlsplit(endpoint)
    scheme = parts.scheme.lower()
    if scheme not in ("https", "http") or not parts.hostname:
        raise ConnectError(f"Unsupported endpoint URL: {endpoint!r}")
    port = parts.port or (443 if scheme == "https" else 80)
    return scheme, parts.hostname, port, parts.netloc


def create_ssl_context() -> ssl.SSLContext:
    """TLS контекст с ALPN h2 и системными CA."""
    context = ssl.create_default_context()
    context.set_alpn_protocols(["h2"])
    return context


class GrpcSession:
    """
    Одноразовая HTTP/2 сессия для одного unary gRPC вызова.

    Не переиспользуется: после unary_call соединение закрыто.
    """

    def __init__(
        self,
        endpoint: str,
        method: str = RPC_METHOD,
        timeout: float = RPC_TIMEOUT_SECONDS,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        """
        Args:
            endpoint: Базовый URL сервиса (https:// или http:// для h2c)
            method: Путь RPC, например /network.ProverNetwork/GetProofRequestStatus
            timeout: Ограничение на весь round-trip (секунды)
            ssl_context: TLS контекст (по умолчанию create_ssl_context())
        """
        self.endpoint = endpoint
        self.method = method
        self.timeout = timeout
        self.ssl_context = ssl_context

        self.state = SessionState.CONNECTING
        self.status = GrpcStatus()

        self._conn: Optional[H2Connection] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._stream_id: Optional[int] = None
        self._stream_ended = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def unary_call(self, message: bytes) -> bytes:
        """
        Выполнить unary вызов.

        Args:
            message: Protobuf сообщение запроса (без gRPC фрейма)

        Returns:
            Сырое тело ответа (gRPC фреймы)

        Raises:
            ConnectError: Ошибка соединения/TLS/протокола HTTP/2
            RpcTimeoutError: Превышен timeout
            RpcStatusError: grpc-status != 0
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        try:
            return await asyncio.wait_for(self._exchange(message), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.state = SessionState.FAILED
            self._cancel_stream()
            raise RpcTimeoutError(
                f"{self.endpoint} did not respond within {self.timeout:.1f}s"
            ) from None
        except BaseException:
            self.state = SessionState.FAILED
            raise
        finally:
            if self.state == SessionState.COMPLETE:
                await self.close(timeout=min(max(deadline - loop.time(), 0.0), CLOSE_TIMEOUT_SECONDS))
            else:
                self.abort()

    async def _exchange(self, message: bytes) -> bytes:
        scheme, host, port, authority = _parse_endpoint(self.endpoint)

        # CONNECTING
        self.state = SessionState.CONNECTING
        ssl_context = None
        if scheme == "https":
            ssl_context = self.ssl_context or create_ssl_context()
        try:
            self._reader, self._writer = await asyncio.open_connection(
                host,
                port,
                ssl=ssl_context,
                server_hostname=host if ssl_context else None,
            )
        except OSError as e:
            raise ConnectError(f"Connect to {self.endpoint} failed: {e}") from e

        if ssl_context is not None:
            ssl_object = self._writer.get_extra_info("ssl_object")
            negotiated = ssl_object.selected_alpn_protocol() if ssl_object else None
            if negotiated != "h2":
                raise ConnectError(
                    f"{self.endpoint} did not negotiate HTTP/2 (ALPN: {negotiated!r})"
                )

        self._conn = H2Connection(
            config=H2Configuration(client_side=True, header_encoding="utf-8")
        )
        self._conn.initiate_connection()

        # REQUESTING
        self.state = SessionState.REQUESTING
        self._stream_id = self._conn.get_next_available_stream_id()
        self._conn.send_headers(
            self._stream_id,
            [
                (":method", "POST"),
                (":scheme", scheme),
                (":authority", authority),
                (":path", self.method),
                ("content-type", "application/grpc"),
                ("te", "trailers"),
            ],
        )
        self._conn.send_data(self._stream_id, frame(message), end_stream=True)
        await self._flush()

        # AWAITING_RESPONSE
        self.state = SessionState.AWAITING_RESPONSE
        body = bytearray()
        while not self._stream_ended:
            try:
                data = await self._reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise ConnectError(f"Read from {self.endpoint} failed: {e}") from e
            if not data:
                raise ConnectError(f"{self.endpoint} closed the connection mid-response")

            try:
                events = self._conn.receive_data(data)
            except ProtocolError as e:
                raise ConnectError(f"HTTP/2 protocol error from {self.endpoint}: {e}") from e

            for event in events:
                self._handle_event(event, body)
            await self._flush()

        self.status.raise_for_status()
        self.state = SessionState.COMPLETE
        logger.debug(
            f"[GRPC] {self.endpoint}{self.method} -> {len(body)} bytes, status {self.status.code}"
        )
        return bytes(body)

    def _handle_event(self, event, body: bytearray) -> None:
        if isinstance(event, ResponseReceived):
            if event.stream_id == self._stream_id:
                self.status.observe_headers(event.headers)
        elif isinstance(event, DataReceived):
            if event.stream_id == self._stream_id:
                body.extend(event.data)
            self._conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
        elif isinstance(event, TrailersReceived):
            if event.stream_id == self._stream_id:
                self.status.observe_trailers(event.headers)
        elif isinstance(event, StreamEnded):
            if event.stream_id == self._stream_id:
                self._stream_ended = True
        elif isinstance(event, StreamReset):
            if event.stream_id == self._stream_id:
                raise ConnectError(
                    f"{self.endpoint} reset the stream (error code {event.error_code})"
                )
        elif isinstance(event, ConnectionTerminated):
            raise ConnectError(
                f"{self.endpoint} terminated the connection (error code {event.error_code})"
            )

    async def _flush(self) -> None:
        outbound = self._conn.data_to_send()
        if outbound:
            self._writer.write(outbound)
            try:
                await self._writer.drain()
            except OSError as e:
                raise ConnectError(f"Write to {self.endpoint} failed: {e}") from e

    def _cancel_stream(self) -> None:
        """Отменить незавершённый поток (RST_STREAM CANCEL)."""
        if self._conn is None or self._stream_id is None or self._stream_ended:
            return
        try:
            self._conn.reset_stream(self._stream_id, error_code=ErrorCodes.CANCEL)
        except ProtocolError:
            pass

    def _send_goaway(self, writer: asyncio.StreamWriter) -> None:
        """Записать GOAWAY (и отложенный RST_STREAM) без ожидания drain."""
        if self._conn is None:
            return
        try:
            self._conn.close_connection()
            outbound = self._conn.data_to_send()
            if outbound and not writer.is_closing():
                writer.write(outbound)
        except (ProtocolError, OSError, RuntimeError):
            pass

    def abort(self) -> None:
        """
        Оборвать соединение немедленно.

        Не ждёт ни drain, ни TLS close_notify от peer.
        Используется на путях timeout и ошибки.
        """
        if self._closed:
            return
        self._closed = True

        writer = self._writer
        if writer is None:
            return

        self._send_goaway(writer)
        writer.transport.abort()

    async def close(self, timeout: float = CLOSE_TIMEOUT_SECONDS) -> None:
        """
        Закрыть соединение мягко (GOAWAY + закрытие сокета).

        Ожидание закрытия ограничено `timeout`, затем abort.
        Идемпотентно.
        """
        if self._closed:
            return
        self._closed = True

        writer = self._writer
        if writer is None:
            return

        self._send_goaway(writer)
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug(f"[GRPC] {self.endpoint} close not acknowledged in {timeout:.1f}s, aborting")
            writer.transport.abort()
        except OSError:
            # Peer сбросил соединение во время закрытия
            pass


async def get_proof_request_status(
    endpoint: str,
    request_id: bytes,
    *,
    method: str = RPC_METHOD,
    timeout: float = RPC_TIMEOUT_SECONDS,
    ssl_context: Optional[ssl.SSLContext] = None,
) -> int:
    """
    Запросить числовой FulfillmentStatus у одного endpoint.

    [WIRE] Запрос: `{ bytes request_id = 1; }`
    [WIRE] Ответ: первое поле - fulfillment_status (varint)

    Raises:
        TransportError: Ошибки соединения, timeout, grpc-status
        WireError: Ответ не декодируется (EmptyResponseError и т.д.)
    """
    session = GrpcSession(endpoint, method=method, timeout=timeout, ssl_context=ssl_context)
    body = await session.unary_call(encode_bytes_field(REQUEST_ID_FIELD, request_id))

    if len(body) < MIN_RESPONSE_SIZE:
        raise EmptyResponseError(f"Empty gRPC response from {endpoint} ({len(body)} bytes)")

    message = unframe(body)
    return decode_varint_field(message)
