"""
Prover Module
=============
Внешние коллабораторы proving pipeline:
- FileStore: загруженные документы и proof артефакты
- ProvingPipeline: конвертер и prover как непрозрачные процессы
"""

from .storage import FileStore, StoredFile, StorageError
from .pipeline import ProvingPipeline, ProveResult, PipelineError, parse_prove_output

__all__ = [
    "FileStore",
    "StoredFile",
    "StorageError",
    "ProvingPipeline",
    "ProveResult",
    "PipelineError",
    "parse_prove_output",
]
