"""
Proofgate HTTP API
==================

[ENDPOINTS]
- GET  /api/proof-status?requestId=0x...  -> {"status": "pending" | ...}
- GET  /api/latest-proof                  -> {"filename": "..."}
- POST /api/upload   (multipart "file")   -> {"filename", "size", "path"}
- POST /api/verify   (Self proof JSON)    -> {"status", "result", "proofId"}
- POST /api/prove    ({"proofFile", "pdfFile"?}) -> {"explorerUrl", "requestId", "identity"}

[POLICY] /api/proof-status отвечает 400 только на невалидный requestId.
Ошибки prover network поглощаются клиентом и дают "pending".
"""

import logging
from typing import Optional

from aiohttp import web

from config import ApiConfig
from core.client import ProofStatusClient
from core.errors import InvalidRequestIdError
from prover.pipeline import PipelineError, ProvingPipeline
from prover.storage import FileStore, StorageError

logger = logging.getLogger(__name__)


CLIENT_KEY = web.AppKey("status_client", ProofStatusClient)
STORE_KEY = web.AppKey("file_store", FileStore)
PIPELINE_KEY = web.AppKey("pipeline", ProvingPipeline)


def _error(message: str, status: int, **extra) -> web.Response:
    return web.json_response({"error": message, **extra}, status=status)


async def _read_json(request: web.Request) -> Optional[dict]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


async def proof_status(request: web.Request) -> web.Response:
    request_id = request.query.get("requestId")
    if not request_id:
        return _error("requestId required", 400)

    try:
        status = await request.app[CLIENT_KEY].get_status(request_id)
    except InvalidRequestIdError as e:
        return _error(str(e), 400)

    return web.json_response({"status": status})


async def latest_proof(request: web.Request) -> web.Response:
    try:
        filename = request.app[STORE_KEY].latest_proof()
    except OSError as e:
        logger.error(f"[API] Failed to list proofs: {e}")
        return _error("Failed to list proofs", 500)

    if filename is None:
        return _error("No proof files found", 404)
    return web.json_response({"filename": filename})


async def upload(request: web.Request) -> web.Response:
    try:
        form = await request.post()
    except web.HTTPRequestEntityTooLarge:
        return _error("File too large", 413)

    field = form.get("file")
    if field is None or not isinstance(field, web.FileField):
        return _error("No file provided", 400)

    try:
        stored = request.app[STORE_KEY].save_upload(field.filename, field.file.read())
    except StorageError as e:
        return _error(str(e), 400)
    except OSError as e:
        logger.error(f"[API] Upload failed: {e}")
        return _error("Upload failed", 500)

    return web.json_response(stored.to_dict())


async def verify(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if body is None:
        return web.json_response({"status": "error", "result": False, "reason": "Invalid JSON body"})

    attestation_id = body.get("attestationId")
    logger.info(f"[API] Verify request, keys: {sorted(body)}, attestationId: {attestation_id}")

    proof = body.get("proof")
    public_signals = body.get("publicSignals")
    if not proof or not public_signals:
        logger.warning("[API] Verify request missing proof or publicSignals")
        return web.json_response(
            {"status": "error", "result": False, "reason": "Missing proof or publicSignals"}
        )

    try:
        proof_id = request.app[STORE_KEY].save_proof(attestation_id, proof, public_signals)
    except (StorageError, OSError) as e:
        logger.error(f"[API] Failed to save proof: {e}")
        return web.json_response({"status": "error", "result": False, "reason": str(e)})

    return web.json_response({"status": "success", "result": True, "proofId": proof_id})


async def prove(request: web.Request) -> web.Response:
    body = await _read_json(request)
    if not body or not body.get("proofFile"):
        return _error("proofFile is required", 400)

    try:
        result = await request.app[PIPELINE_KEY].prove(
            str(body["proofFile"]),
            pdf_file=str(body["pdfFile"]) if body.get("pdfFile") else None,
        )
    except StorageError as e:
        return _error(str(e), 400)
    except PipelineError as e:
        logger.error(f"[API] Prove pipeline failed: {e}")
        return _error(str(e), 500, stdout=e.stdout, stderr=e.stderr)

    return web.json_response(result.to_dict())


def create_app(
    client: Optional[ProofStatusClient] = None,
    store: Optional[FileStore] = None,
    pipeline: Optional[ProvingPipeline] = None,
    api_config: Optional[ApiConfig] = None,
) -> web.Application:
    """Собрать aiohttp приложение с внедряемыми зависимостями."""
    api_config = api_config or ApiConfig()
    store = store or FileStore()

    app = web.Application(client_max_size=api_config.max_upload_size)
    app[CLIENT_KEY] = client or ProofStatusClient()
    app[STORE_KEY] = store
    app[PIPELINE_KEY] = pipeline or ProvingPipeline(store=store)

    app.router.add_get("/api/proof-status", proof_status)
    app.router.add_get("/api/latest-proof", latest_proof)
    app.router.add_post("/api/upload", upload)
    app.router.add_post("/api/verify", verify)
    app.router.add_post("/api/prove", prove)
    return app


async def start_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    """Запустить HTTP сервер. Возвращает runner для cleanup()."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"[API] Listening on http://{host}:{port}")
    return runner
