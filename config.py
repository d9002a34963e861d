"""
Proofgate Configuration
=======================
Централизованная конфигурация для всех модулей сервиса.

[STATIC] Endpoints и RPC метод prover network - неизменяемые константы
процесса. Не читаются из окружения и не меняются во время работы.
Остальные параметры можно переопределить через переменные окружения
(или .env, который загружает main.py).
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

import os


# ============================================================================
# Prover Network (immutable)
# ============================================================================

# Production (reserved) первым - туда SDK отправляет запросы по умолчанию
RPC_ENDPOINTS: Tuple[str, ...] = (
    "https://rpc.production.succinct.xyz",
    "https://rpc.mainnet.succinct.xyz",
)
RPC_METHOD: str = "/network.ProverNetwork/GetProofRequestStatus"
RPC_TIMEOUT_SECONDS: float = 10.0

EXPLORER_URL: str = "https://network.succinct.xyz"


# ============================================================================
# Environment overrides
# ============================================================================

def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


ROOT_DIR: Path = Path(os.getenv("PROOFGATE_ROOT", "").strip() or Path.cwd())
API_HOST: str = os.getenv("PROOFGATE_HOST", "0.0.0.0").strip() or "0.0.0.0"
API_PORT: int = _env_int("PROOFGATE_PORT", 8080)
POLL_INTERVAL: float = _env_float("PROOFGATE_POLL_INTERVAL", 15.0)
MAX_POLLS: int = _env_int("PROOFGATE_MAX_POLLS", 0)


@dataclass
class StatusConfig:
    """Настройки запроса статуса."""

    endpoints: Tuple[str, ...] = RPC_ENDPOINTS
    method: str = RPC_METHOD

    # Верхняя граница на весь round-trip к одному endpoint (секунды)
    timeout: float = RPC_TIMEOUT_SECONDS

    # Интервал опроса статуса (секунды)
    poll_interval: float = POLL_INTERVAL

    # 0 = опрашивать до терминального статуса
    max_polls: int = MAX_POLLS


@dataclass
class StorageConfig:
    """Настройки файлового хранилища."""

    root_dir: Path = ROOT_DIR
    uploads_dir: str = "uploads"
    proofs_dir: str = "proofs"
    gnark_dir: str = "gnark-out"


@dataclass
class PipelineConfig:
    """Внешние бинарники proving pipeline."""

    # Конвертер Self proof -> gnark
    converter_bin: str = os.getenv("PROOFGATE_CONVERTER_BIN", "self2gnark/self2gnark")
    convert_timeout: float = _env_float("PROOFGATE_CONVERT_TIMEOUT", 30.0)

    # SP1 prover (отправка в prover network)
    prover_bin: str = os.getenv("PROOFGATE_PROVER_BIN", "sp1/target/release/prove")
    prove_timeout: float = _env_float("PROOFGATE_PROVE_TIMEOUT", 120.0)
    prover_log_level: str = os.getenv("PROOFGATE_PROVER_LOG", "info")


@dataclass
class ApiConfig:
    """Настройки HTTP API."""

    host: str = API_HOST
    port: int = API_PORT

    # Максимальный размер загружаемого документа (байты)
    max_upload_size: int = 32 * 1024 * 1024


@dataclass
class Config:
    """Главный конфигурационный класс."""

    status: StatusConfig = field(default_factory=StatusConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


# Глобальный экземпляр конфигурации
config = Config()
