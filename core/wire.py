"""
gRPC Wire Format - Varint, Protobuf поля и gRPC фреймы
======================================================

Минимальный кодек для одного unary вызова ProverNetwork.
Полноценная protobuf схема не нужна: исходящее сообщение содержит
одно bytes поле, во входящем читается одно enum поле.

Спецификация фрейма gRPC (Length-Prefixed Message, 5 байт заголовка):
=====================================================================

Format String: `>BI` (Big-Endian)

| Field      | Type | Size | Description                          |
|------------|------|------|--------------------------------------|
| Compressed | B    | 1    | 0 - без сжатия (единственный режим)  |
| Length     | I    | 4    | Размер protobuf сообщения            |
| Message    |      | N    | Protobuf payload                     |

Protobuf:
    tag = (field_number << 3) | wire_type
    wire_type 0 - varint, wire_type 2 - length-delimited

[WIRE] Исходящее сообщение: `{ bytes request_id = 1; }`
[WIRE] Входящее сообщение: первое поле - `FulfillmentStatus` (varint)
"""

import struct
from typing import Tuple

from core.errors import (
    MalformedVarintError,
    TruncatedFrameError,
    UnsupportedCompressionError,
    UnsupportedWireTypeError,
)


# ============================================================================
# Protocol Constants
# ============================================================================

WIRE_TYPE_VARINT = 0
WIRE_TYPE_LENGTH_DELIMITED = 2

FRAME_HEADER_FORMAT = '>BI'     # compression flag + message length
FRAME_HEADER_SIZE = 5

FLAG_UNCOMPRESSED = 0x00
FLAG_COMPRESSED = 0x01

MAX_VARINT_BYTES = 10           # 64 бита / 7 бит на байт
MAX_VARINT_VALUE = (1 << 64) - 1


# ============================================================================
# Varint
# ============================================================================

def encode_varint(value: int) -> bytes:
    """
    Закодировать неотрицательное целое в base-128 varint.

    Группы по 7 бит little-endian, старший бит - флаг продолжения.

    Raises:
        ValueError: Отрицательное значение или больше 64 бит
    """
    if value < 0:
        raise ValueError(f"Varint must be non-negative: {value}")
    if value > MAX_VARINT_VALUE:
        raise ValueError(f"Varint exceeds 64 bits: {value}")

    buffer = bytearray()
    while value > 0x7F:
        buffer.append((value & 0x7F) | 0x80)
        value >>= 7
    buffer.append(value)
    return bytes(buffer)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Прочитать varint начиная с offset.

    Returns:
        (value, next_offset)

    Raises:
        MalformedVarintError: Буфер закончился посреди varint
            или последовательность длиннее 10 байт
    """
    result = 0
    shift = 0
    pos = offset

    while pos < len(data):
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if pos - offset >= MAX_VARINT_BYTES:
            raise MalformedVarintError(
                f"Varint longer than {MAX_VARINT_BYTES} bytes at offset {offset}"
            )

    raise MalformedVarintError(
        f"Buffer exhausted while reading varint at offset {offset}"
    )


# ============================================================================
# Protobuf fields
# ============================================================================

def make_tag(field_number: int, wire_type: int) -> int:
    if field_number < 1:
        raise ValueError(f"Invalid protobuf field number: {field_number}")
    return (field_number << 3) | wire_type


def encode_bytes_field(field_number: int, payload: bytes) -> bytes:
    """
    Закодировать length-delimited поле.

    [WIRE] tag(varint) + len(varint) + payload
    """
    tag = make_tag(field_number, WIRE_TYPE_LENGTH_DELIMITED)
    return encode_varint(tag) + encode_varint(len(payload)) + bytes(payload)


def decode_bytes_field(message: bytes, offset: int = 0) -> Tuple[int, bytes, int]:
    """
    Прочитать одно length-delimited поле.

    Returns:
        (field_number, payload, next_offset)

    Raises:
        UnsupportedWireTypeError: Поле не length-delimited
        MalformedVarintError: Объявленная длина больше буфера
    """
    tag, pos = decode_varint(message, offset)
    wire_type = tag & 0x07
    if wire_type != WIRE_TYPE_LENGTH_DELIMITED:
        raise UnsupportedWireTypeError(WIRE_TYPE_LENGTH_DELIMITED, wire_type)

    length, pos = decode_varint(message, pos)
    end = pos + length
    if end > len(message):
        raise MalformedVarintError(
            f"Field length {length} exceeds buffer ({len(message) - pos} bytes left)"
        )
    return tag >> 3, bytes(message[pos:end]), end


def decode_varint_field(message: bytes, offset: int = 0) -> int:
    """
    Прочитать скалярное значение первого поля (wire type 0).

    Используется для `fulfillment_status` в ответе GetProofRequestStatus.

    Raises:
        UnsupportedWireTypeError: Первое поле не varint
        MalformedVarintError: Обрыв varint
    """
    tag, pos = decode_varint(message, offset)
    wire_type = tag & 0x07
    if wire_type != WIRE_TYPE_VARINT:
        raise UnsupportedWireTypeError(WIRE_TYPE_VARINT, wire_type)

    value, _ = decode_varint(message, pos)
    return value


# ============================================================================
# gRPC Length-Prefixed Message
# ============================================================================

def frame(message: bytes) -> bytes:
    """Обернуть protobuf сообщение в gRPC фрейм (без сжатия)."""
    return struct.pack(FRAME_HEADER_FORMAT, FLAG_UNCOMPRESSED, len(message)) + bytes(message)


def unframe(buffer: bytes) -> bytes:
    """
    Извлечь сообщение из первого gRPC фрейма.

    Байты после первого фрейма игнорируются (unary ответ содержит один фрейм).

    Raises:
        TruncatedFrameError: Меньше 5 байт заголовка или payload короче
            объявленной длины
        UnsupportedCompressionError: Установлен флаг сжатия
    """
    if len(buffer) < FRAME_HEADER_SIZE:
        raise TruncatedFrameError(
            f"Frame header too short: {len(buffer)} < {FRAME_HEADER_SIZE}"
        )

    flag, length = struct.unpack(FRAME_HEADER_FORMAT, buffer[:FRAME_HEADER_SIZE])

    end = FRAME_HEADER_SIZE + length
    if end > len(buffer):
        raise TruncatedFrameError(
            f"Incomplete frame: need {end} bytes, got {len(buffer)}"
        )

    if flag & FLAG_COMPRESSED:
        raise UnsupportedCompressionError("Compressed gRPC frames are not supported")

    return bytes(buffer[FRAME_HEADER_SIZE:end])
