"""
Proving Pipeline - Запуск внешних бинарников
============================================

[PIPELINE] Внешние процессы - непрозрачные коллабораторы:
1. Конвертер: Self proof -> gnark формат (+ identity.json)
   `<converter> --proof <path> --export-gnark <dir> --decode`
2. Prover: отправка в prover network
   `<prover> --prove --network --gnark-dir <dir> [--pdf <path>]`

Prover печатает результат между маркерами:

    ---JSON_OUTPUT_START---
    {"request_id": "0x...", "explorer_url": "https://..."}
    ---JSON_OUTPUT_END---
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from config import PipelineConfig
from prover.storage import FileStore

logger = logging.getLogger(__name__)


JSON_OUTPUT_RE = re.compile(
    r"---JSON_OUTPUT_START---\s*(.*?)\s*---JSON_OUTPUT_END---",
    re.DOTALL,
)


class PipelineError(Exception):
    """
    Ошибка этапа pipeline.

    Attributes:
        stage: Имя этапа ("convert" / "prove")
        stdout, stderr: Вывод процесса (если был)
    """

    def __init__(self, stage: str, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.stdout = stdout
        self.stderr = stderr


@dataclass
class ProveResult:
    """Результат отправки proof в prover network."""
    explorer_url: str
    request_id: str
    identity: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "explorerUrl": self.explorer_url,
            "requestId": self.request_id,
            "identity": self.identity,
        }


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


async def run_binary(
    path: str,
    args: Sequence[str],
    timeout: float,
    env: Optional[Mapping[str, str]] = None,
    stage: str = "run",
) -> Tuple[str, str]:
    """
    Запустить процесс и дождаться завершения.

    Returns:
        (stdout, stderr)

    Raises:
        PipelineError: Не запустился, timeout или ненулевой код выхода
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
    except OSError as e:
        raise PipelineError(stage, f"Cannot start {path}: {e}") from e

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        raise PipelineError(stage, f"{Path(path).name} timed out after {timeout:.0f}s") from None
    except BaseException:
        # Отмена вызывающего: процесс не переживает вызов
        await _kill(proc)
        raise

    stdout = out.decode("utf-8", errors="replace")
    stderr = err.decode("utf-8", errors="replace")

    if proc.returncode != 0:
        raise PipelineError(
            stage,
            f"{Path(path).name} exited with code {proc.returncode}",
            stdout=stdout,
            stderr=stderr,
        )
    return stdout, stderr


def parse_prove_output(stdout: str) -> Dict[str, Any]:
    """
    Извлечь JSON результат из вывода prover.

    Raises:
        PipelineError: Маркеры не найдены или JSON невалиден
    """
    match = JSON_OUTPUT_RE.search(stdout)
    if not match:
        raise PipelineError("prove", "Failed to parse prove output", stdout=stdout)
    try:
        result = json.loads(match.group(1))
    except ValueError as e:
        raise PipelineError("prove", f"Invalid JSON in prove output: {e}", stdout=stdout) from e
    if not isinstance(result, dict):
        raise PipelineError("prove", "Prove output is not a JSON object", stdout=stdout)
    return result


class ProvingPipeline:
    """
    Конвертация proof и отправка в prover network.

    [USAGE]
        pipeline = ProvingPipeline(config.pipeline, FileStore())
        result = await pipeline.prove("passport_1700000000000.json", pdf_file=None)
    """

    def __init__(self, config: Optional[PipelineConfig] = None, store: Optional[FileStore] = None):
        self.config = config or PipelineConfig()
        self.store = store or FileStore()

    def _resolve_bin(self, path: str) -> str:
        binary = Path(path)
        if not binary.is_absolute():
            binary = self.store.root / binary
        return str(binary)

    async def convert(self, proof_path: Path) -> Optional[Dict[str, Any]]:
        """Этап 1: Self proof -> gnark. Возвращает decoded identity (если есть)."""
        logger.info(f"[PROVE] Converting proof: {proof_path.name}")
        stdout, stderr = await run_binary(
            self._resolve_bin(self.config.converter_bin),
            ["--proof", str(proof_path), "--export-gnark", str(self.store.gnark_dir), "--decode"],
            timeout=self.config.convert_timeout,
            stage="convert",
        )
        if stderr:
            logger.debug(f"[PROVE] converter stderr: {stderr}")
        logger.debug(f"[PROVE] converter stdout: {stdout}")
        return self.store.read_identity()

    async def submit(self, pdf_path: Optional[Path] = None) -> Dict[str, Any]:
        """Этап 2: отправка в prover network."""
        logger.info("[PROVE] Submitting to prover network...")
        args: List[str] = ["--prove", "--network", "--gnark-dir", str(self.store.gnark_dir)]
        if pdf_path is not None:
            args += ["--pdf", str(pdf_path)]

        env = dict(os.environ)
        env["RUST_LOG"] = self.config.prover_log_level
        stdout, stderr = await run_binary(
            self._resolve_bin(self.config.prover_bin),
            args,
            timeout=self.config.prove_timeout,
            env=env,
            stage="prove",
        )
        if stderr:
            logger.debug(f"[PROVE] prover stderr: {stderr}")
        return parse_prove_output(stdout)

    async def prove(self, proof_file: str, pdf_file: Optional[str] = None) -> ProveResult:
        """
        Полный pipeline.

        Raises:
            PipelineError: Ошибка любого этапа
            StorageError: Невалидное имя файла
        """
        proof_path = self.store.proof_path(proof_file)
        pdf_path = self.store.upload_path(pdf_file) if pdf_file else None

        identity = await self.convert(proof_path)
        output = await self.submit(pdf_path)

        result = ProveResult(
            explorer_url=str(output.get("explorer_url", "")),
            request_id=str(output.get("request_id", "")),
            identity=identity,
        )
        logger.info(f"[PROVE] Submitted request {result.request_id}")
        return result
