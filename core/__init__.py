"""
Core Proof Status Module
========================
Клиент статуса запросов prover network поверх gRPC/HTTP2:
- wire: varint, protobuf поля, gRPC фреймы
- transport: одноразовая HTTP/2 сессия для unary вызова
- client: failover по endpoints, best-effort статус
- status: словарь статусов для вызывающего кода
- poller: периодический опрос до терминального статуса
"""

from .errors import (
    ProofStatusError,
    InvalidRequestIdError,
    WireError,
    MalformedVarintError,
    UnsupportedWireTypeError,
    TruncatedFrameError,
    UnsupportedCompressionError,
    EmptyResponseError,
    TransportError,
    ConnectError,
    RpcTimeoutError,
    RpcStatusError,
)
from .status import FulfillmentStatus, translate_status, is_terminal, DEFAULT_STATUS
from .transport import GrpcSession, SessionState, get_proof_request_status
from .client import ProofStatusClient, parse_request_id
from .poller import StatusPoller

__all__ = [
    "ProofStatusError",
    "InvalidRequestIdError",
    "WireError",
    "MalformedVarintError",
    "UnsupportedWireTypeError",
    "TruncatedFrameError",
    "UnsupportedCompressionError",
    "EmptyResponseError",
    "TransportError",
    "ConnectError",
    "RpcTimeoutError",
    "RpcStatusError",
    "FulfillmentStatus",
    "translate_status",
    "is_terminal",
    "DEFAULT_STATUS",
    "GrpcSession",
    "SessionState",
    "get_proof_request_status",
    "ProofStatusClient",
    "parse_request_id",
    "StatusPoller",
]
