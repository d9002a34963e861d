"""
Proofgate Test Configuration
============================

[QA] Central pytest configuration with fixtures for all test types:
- Unit tests: Isolated, no I/O, fast
- Integration tests: Real async I/O against a local HTTP/2 server

[FIXTURES]
- temp_dir: Per-test temporary directory
- file_store: FileStore rooted in temp_dir
- fake_query: Scripted per-endpoint status query (no network)
- prover_server_factory: Local h2c or TLS gRPC server with scripted responses
- tls: Throwaway CA (trustme), server and client SSL contexts
- stalled_tls_server_factory: TLS server that handshakes and then goes silent

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Integration tests
"""

import asyncio
import logging
import shutil
import socket
import ssl
import sys
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import pytest
import pytest_asyncio
import trustme
from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.events import ConnectionTerminated, DataReceived, RequestReceived, StreamEnded, StreamReset
from h2.exceptions import ProtocolError

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (I/O, slower)")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        path = str(item.fspath).replace("\\", "/")
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # Silence noisy loggers during tests
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="proofgate_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="function")
def file_store(temp_dir: Path):
    """FileStore rooted in an isolated temp directory."""
    from config import StorageConfig
    from prover.storage import FileStore

    return FileStore(StorageConfig(root_dir=temp_dir))


# ============================================================================
# Status Query Fixtures
# ============================================================================

class FakeQuery:
    """
    Scripted replacement for get_proof_request_status.

    Outcomes per endpoint: an int is returned, an exception is raised.

    [USAGE]
        query = fake_query({"https://a": RpcTimeoutError("t"), "https://b": 3})
        client = ProofStatusClient(endpoints=["https://a", "https://b"], query=query)
    """

    def __init__(self, outcomes: Dict[str, Any]):
        self.outcomes = outcomes
        self.calls: List[Tuple[str, bytes]] = []

    @property
    def endpoints_called(self) -> List[str]:
        return [endpoint for endpoint, _ in self.calls]

    async def __call__(self, endpoint: str, request_id: bytes) -> int:
        self.calls.append((endpoint, request_id))
        outcome = self.outcomes[endpoint]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture(scope="function")
def fake_query() -> Callable[[Dict[str, Any]], FakeQuery]:
    """Factory for scripted status queries."""
    return FakeQuery


# ============================================================================
# Local HTTP/2 gRPC Server
# ============================================================================

@dataclass
class ScriptedResponse:
    """
    What the fake prover server answers to every request.

    - headers: extra response headers (after :status/content-type)
    - body: raw response body (already gRPC framed)
    - trailers: trailing headers, None for Trailers-Only responses
    - silent: never answer (timeout scenarios)
    """
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    trailers: Optional[List[Tuple[str, str]]] = field(default_factory=lambda: [("grpc-status", "0")])
    silent: bool = False
    http_status: str = "200"


class FakeProverServer:
    """
    Minimal HTTP/2 server: h2c (prior knowledge) or TLS when ssl_context is set.

    Records request headers and bodies, answers with a ScriptedResponse.
    """

    def __init__(self, response: ScriptedResponse, ssl_context: Optional[ssl.SSLContext] = None):
        self.response = response
        self.ssl_context = ssl_context
        self.requests: List[Tuple[Dict[str, str], bytes]] = []
        self.connections_opened = 0
        self.connections_closed = 0
        self.streams_reset = 0
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def endpoint(self) -> str:
        scheme = "https" if self.ssl_context is not None else "http"
        return f"{scheme}://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0, ssl=self.ssl_context)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def wait_all_closed(self, timeout: float = 2.0) -> bool:
        """Wait until every accepted connection has been closed by the client."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.connections_closed < self.connections_opened:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.01)
        return True

    def _respond(self, conn: H2Connection, stream_id: int) -> None:
        response = self.response
        headers = [(":status", response.http_status), ("content-type", "application/grpc")]
        headers += response.headers
        if response.trailers is None:
            conn.send_headers(stream_id, headers, end_stream=True)
            return
        conn.send_headers(stream_id, headers)
        if response.body:
            conn.send_data(stream_id, response.body)
        conn.send_headers(stream_id, response.trailers, end_stream=True)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections_opened += 1
        conn = H2Connection(config=H2Configuration(client_side=False, header_encoding="utf-8"))
        conn.initiate_connection()
        writer.write(conn.data_to_send())

        request_headers: Dict[str, str] = {}
        body = bytearray()
        try:
            await writer.drain()
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                for event in conn.receive_data(data):
                    if isinstance(event, RequestReceived):
                        request_headers = dict(event.headers)
                    elif isinstance(event, DataReceived):
                        body.extend(event.data)
                        conn.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                    elif isinstance(event, StreamEnded):
                        self.requests.append((request_headers, bytes(body)))
                        if not self.response.silent:
                            self._respond(conn, event.stream_id)
                    elif isinstance(event, StreamReset):
                        self.streams_reset += 1
                    elif isinstance(event, ConnectionTerminated):
                        pass
                outbound = conn.data_to_send()
                if outbound:
                    writer.write(outbound)
                    await writer.drain()
        except (OSError, ProtocolError):
            pass
        finally:
            self.connections_closed += 1
            writer.close()


@pytest_asyncio.fixture(scope="function")
async def prover_server_factory():
    """
    Factory for local fake prover servers.

    [USAGE]
        server = await prover_server_factory(ScriptedResponse(...))
        await get_proof_request_status(server.endpoint, b"\\x01")
    """
    servers: List[FakeProverServer] = []

    async def _create(
        response: Optional[ScriptedResponse] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> FakeProverServer:
        server = FakeProverServer(response or ScriptedResponse(), ssl_context=ssl_context)
        await server.start()
        servers.append(server)
        return server

    yield _create

    for server in servers:
        await server.stop()


def status_body(value: int) -> bytes:
    """Framed GetProofRequestStatusResponse with fulfillment_status = value."""
    from core.wire import encode_varint, frame

    return frame(encode_varint((1 << 3) | 0) + encode_varint(value))


# ============================================================================
# TLS
# ============================================================================

@dataclass
class TlsMaterial:
    """
    Throwaway CA with a certificate for 127.0.0.1.

    - server_context(alpn): server side, ALPN protocols optional
    - client_context(): trusts only this CA, offers ALPN h2
    """
    ca: trustme.CA
    cert: trustme.LeafCert

    def server_context(self, alpn: Optional[Tuple[str, ...]] = ("h2",)) -> ssl.SSLContext:
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        self.cert.configure_cert(context)
        if alpn:
            context.set_alpn_protocols(list(alpn))
        return context

    def client_context(self) -> ssl.SSLContext:
        from core.transport import create_ssl_context

        context = create_ssl_context()
        self.ca.configure_trust(context)
        return context


def _make_tls() -> TlsMaterial:
    ca = trustme.CA()
    return TlsMaterial(ca=ca, cert=ca.issue_cert("127.0.0.1", "localhost"))


@pytest.fixture(scope="session")
def tls() -> TlsMaterial:
    """Trusted CA for TLS tests."""
    return _make_tls()


@pytest.fixture(scope="session")
def untrusted_tls() -> TlsMaterial:
    """Second CA that clients built from `tls` do not trust."""
    return _make_tls()


class StalledTlsServer:
    """
    Blocking-socket TLS server in a thread.

    Completes the handshake, then never reads or writes until closed.
    A graceful TLS shutdown against it waits for a close_notify that never comes.
    """

    def __init__(self, ssl_context: ssl.SSLContext):
        self.ssl_context = ssl_context
        self.handshakes = 0
        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(4)
        self._listener.settimeout(0.05)
        self.port = self._listener.getsockname()[1]
        self._release = threading.Event()
        self._connections: List[socket.socket] = []
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def endpoint(self) -> str:
        return f"https://127.0.0.1:{self.port}"

    def _serve(self) -> None:
        while not self._release.is_set():
            try:
                raw, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            raw.settimeout(5.0)
            try:
                tls_sock = self.ssl_context.wrap_socket(raw, server_side=True)
            except OSError:
                raw.close()
                continue
            self.handshakes += 1
            self._connections.append(tls_sock)

    def close(self) -> None:
        self._release.set()
        self._thread.join(timeout=5)
        self._listener.close()
        for conn in self._connections:
            try:
                conn.close()
            except OSError:
                pass


@pytest.fixture(scope="function")
def stalled_tls_server_factory():
    """Factory for StalledTlsServer, closed after the test."""
    servers: List[StalledTlsServer] = []

    def _create(ssl_context: ssl.SSLContext) -> StalledTlsServer:
        server = StalledTlsServer(ssl_context)
        servers.append(server)
        return server

    yield _create

    for server in servers:
        server.close()
