"""
File Store - Хранилище документов и proof артефактов
====================================================

Структура под root_dir:
    uploads/    загруженные PDF (`<millis>_<name>.pdf`)
    proofs/     захваченные Self proofs (`<attestation>_<millis>.json`)
    gnark-out/  выход конвертера (identity.json и т.д.)

[SECURITY] Все имена файлов сводятся к basename: path traversal
через `..` или `/` невозможен.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from config import StorageConfig

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Ошибки файлового хранилища."""
    pass


@dataclass
class StoredFile:
    """Сохранённый файл."""
    filename: str
    size: int
    path: Path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "size": self.size,
            "path": str(self.path),
        }


def safe_name(name: str) -> str:
    """
    Свести имя к basename.

    Raises:
        StorageError: Пустое имя или попытка выйти из каталога
    """
    if not name or "\x00" in name:
        raise StorageError("Invalid filename")
    base = Path(name.replace("\\", "/")).name
    if base in ("", ".", ".."):
        raise StorageError(f"Invalid filename: {name!r}")
    return base


def _millis() -> int:
    return int(time.time() * 1000)


class FileStore:
    """Хранилище, адресуемое по имени файла."""

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig()
        self.root = Path(self.config.root_dir)
        self.uploads_dir = self.root / self.config.uploads_dir
        self.proofs_dir = self.root / self.config.proofs_dir
        self.gnark_dir = self.root / self.config.gnark_dir

    def upload_path(self, name: str) -> Path:
        return self.uploads_dir / safe_name(name)

    def proof_path(self, name: str) -> Path:
        return self.proofs_dir / safe_name(name)

    def save_upload(self, name: str, data: bytes) -> StoredFile:
        """
        Сохранить загруженный PDF.

        Raises:
            StorageError: Не PDF
        """
        base = safe_name(name)
        if not base.lower().endswith(".pdf"):
            raise StorageError("Only PDF files are accepted")

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{_millis()}_{base}"
        path = self.uploads_dir / filename
        path.write_bytes(data)

        logger.info(f"[STORE] PDF uploaded: {path} ({len(data)} bytes)")
        return StoredFile(filename=filename, size=len(data), path=path)

    def save_proof(
        self,
        attestation_id: Optional[Any],
        proof: Any,
        public_signals: Any,
    ) -> str:
        """
        Сохранить Self proof для конвертера.

        Returns:
            proof_id (имя файла без .json)
        """
        prefix = safe_name(str(attestation_id)) if attestation_id else "unknown"
        proof_id = f"{prefix}_{_millis()}"

        self.proofs_dir.mkdir(parents=True, exist_ok=True)
        path = self.proofs_dir / f"{proof_id}.json"
        payload = {
            "attestationId": attestation_id,
            "proof": proof,
            "publicSignals": public_signals,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

        logger.info(f"[STORE] Proof saved: {path}")
        return proof_id

    def latest_proof(self) -> Optional[str]:
        """Имя последнего изменённого .json в proofs/ или None."""
        if not self.proofs_dir.is_dir():
            return None

        latest_name: Optional[str] = None
        latest_mtime = -1.0
        for path in self.proofs_dir.iterdir():
            if path.suffix != ".json" or not path.is_file():
                continue
            mtime = path.stat().st_mtime
            if mtime > latest_mtime:
                latest_name, latest_mtime = path.name, mtime
        return latest_name

    def read_identity(self) -> Optional[Dict[str, Any]]:
        """
        Прочитать identity.json из выхода конвертера.

        Файла может не быть, если декодирование не удалось.
        """
        path = self.gnark_dir / "identity.json"
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"[STORE] Unreadable identity.json: {e}")
            return None
