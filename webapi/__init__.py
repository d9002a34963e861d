"""
HTTP API Module
===============
Тонкие aiohttp обработчики поверх core и prover.
"""

from .app import create_app, start_server

__all__ = ["create_app", "start_server"]
