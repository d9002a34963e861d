"""
Fulfillment Status - Словарь статусов для вызывающего кода
==========================================================

[STATUS] Единственный источник истины для статусов, которые видят
вызывающие: "pending", "assigned", "fulfilled", "failed".

Отображение тотальное: любое неизвестное значение -> "pending".
"""

from enum import IntEnum
from typing import Any, Dict


class FulfillmentStatus(IntEnum):
    """
    FulfillmentStatus из network.ProverNetwork.

    [WIRE] Значения совпадают с protobuf enum.
    """
    UNSPECIFIED = 0
    REQUESTED = 1
    ASSIGNED = 2
    FULFILLED = 3
    UNFULFILLABLE = 4


STATUS_PENDING = "pending"
STATUS_ASSIGNED = "assigned"
STATUS_FULFILLED = "fulfilled"
STATUS_FAILED = "failed"

STATUS_LABELS = (STATUS_PENDING, STATUS_ASSIGNED, STATUS_FULFILLED, STATUS_FAILED)
TERMINAL_LABELS = frozenset({STATUS_FULFILLED, STATUS_FAILED})

DEFAULT_STATUS = STATUS_PENDING

STATUS_MAP: Dict[int, str] = {
    FulfillmentStatus.UNSPECIFIED: STATUS_PENDING,
    FulfillmentStatus.REQUESTED: STATUS_PENDING,
    FulfillmentStatus.ASSIGNED: STATUS_ASSIGNED,
    FulfillmentStatus.FULFILLED: STATUS_FULFILLED,
    FulfillmentStatus.UNFULFILLABLE: STATUS_FAILED,
}


def translate_status(value: Any) -> str:
    """
    Перевести числовой статус в метку.

    Значения вне таблицы (включая отрицательные и артефакты декодирования)
    дают DEFAULT_STATUS.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return DEFAULT_STATUS
    return STATUS_MAP.get(int(value), DEFAULT_STATUS)


def is_terminal(label: str) -> bool:
    """Статус больше не изменится (fulfilled или failed)."""
    return label in TERMINAL_LABELS
