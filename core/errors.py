"""
Proof Status Errors - Иерархия ошибок клиента статуса
=====================================================

[ERRORS] Все ошибки ниже оркестратора локальны для одного endpoint
и восстанавливаются переходом к следующему endpoint.
Наружу пробрасывается только InvalidRequestIdError.

    ProofStatusError
    ├── InvalidRequestIdError
    ├── WireError
    │   ├── MalformedVarintError
    │   ├── UnsupportedWireTypeError
    │   ├── TruncatedFrameError
    │   ├── UnsupportedCompressionError
    │   └── EmptyResponseError
    └── TransportError
        ├── ConnectError
        ├── RpcTimeoutError
        └── RpcStatusError
"""

from typing import Optional


class ProofStatusError(Exception):
    """Базовая ошибка клиента статуса."""
    pass


class InvalidRequestIdError(ProofStatusError, ValueError):
    """Пустой или не-hex идентификатор запроса."""
    pass


# ============================================================================
# Wire (protobuf / gRPC framing)
# ============================================================================

class WireError(ProofStatusError):
    """Ошибки декодирования wire формата."""
    pass


class MalformedVarintError(WireError):
    """Буфер закончился посреди varint или varint длиннее 10 байт."""
    pass


class UnsupportedWireTypeError(WireError):
    """Wire type тега не совпадает с ожидаемым."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Unexpected protobuf wire type: {actual} (expected {expected})")
        self.expected = expected
        self.actual = actual


class TruncatedFrameError(WireError):
    """gRPC фрейм короче заголовка или объявленной длины."""
    pass


class UnsupportedCompressionError(WireError):
    """Сжатый gRPC фрейм без согласованного кодека."""
    pass


class EmptyResponseError(WireError):
    """Ответ слишком короткий для фрейма с одним полем."""
    pass


# ============================================================================
# Transport (HTTP/2 session)
# ============================================================================

class TransportError(ProofStatusError):
    """Ошибки транспортного уровня."""
    pass


class ConnectError(TransportError):
    """Не удалось установить или сохранить соединение."""
    pass


class RpcTimeoutError(TransportError):
    """Превышено время ожидания ответа."""
    pass


class RpcStatusError(TransportError):
    """
    Ненулевой (или отсутствующий) grpc-status.

    Attributes:
        code: Код gRPC статуса или None если статус не получен
        message: Значение grpc-message (если было)
    """

    def __init__(self, code: Optional[int], message: str = ""):
        if code is None:
            text = "gRPC response carried no grpc-status"
        else:
            text = f"gRPC error status {code}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.code = code
        self.message = message
