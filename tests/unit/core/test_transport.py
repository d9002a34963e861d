"""
Transport Layer Unit Tests
==========================

[CRITICAL] core/transport.py - разбор grpc-status и жизненный цикл сессии.
Сетевой обмен целиком проверяется в tests/integration.
"""

import socket

import pytest


# ============================================================================
# GrpcStatus Tests
# ============================================================================

class TestGrpcStatus:
    """Test grpc-status observation and precedence."""

    def test_trailer_overrides_header(self):
        """Header OK followed by trailer 13 is an error."""
        from core.errors import RpcStatusError
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "200"), ("grpc-status", "0")])
        status.observe_trailers([("grpc-status", "13"), ("grpc-message", "internal")])

        assert status.code == 13
        assert not status.ok
        with pytest.raises(RpcStatusError) as exc_info:
            status.raise_for_status()
        assert exc_info.value.code == 13
        assert exc_info.value.message == "internal"

    def test_trailer_ok_overrides_header_error(self):
        """Trailer is authoritative in both directions."""
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "200"), ("grpc-status", "2")])
        status.observe_trailers([("grpc-status", "0")])

        assert status.ok

    def test_precedence_independent_of_order(self):
        """Trailer wins even if observed before headers."""
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_trailers([("grpc-status", "14")])
        status.observe_headers([(":status", "200"), ("grpc-status", "0")])

        assert status.code == 14

    def test_trailers_only(self):
        """Status in response headers alone is used."""
        from core.errors import RpcStatusError
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "200"), ("grpc-status", "5"), ("grpc-message", "not%20found")])

        assert status.code == 5
        with pytest.raises(RpcStatusError) as exc_info:
            status.raise_for_status()
        assert exc_info.value.message == "not found"

    def test_ok_in_trailers(self):
        """Normal response: no status in headers, 0 in trailers."""
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "200"), ("content-type", "application/grpc")])
        status.observe_trailers([("grpc-status", "0")])

        assert status.ok
        status.raise_for_status()

    def test_missing_status(self):
        """No grpc-status anywhere is an error with code None."""
        from core.errors import RpcStatusError
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "200")])

        with pytest.raises(RpcStatusError) as exc_info:
            status.raise_for_status()
        assert exc_info.value.code is None

    def test_non_numeric_status(self):
        """Unparseable grpc-status is an error."""
        from core.errors import RpcStatusError
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_trailers([("grpc-status", "OK")])

        assert not status.ok
        with pytest.raises(RpcStatusError):
            status.raise_for_status()

    def test_http_error_without_grpc_status(self):
        """HTTP status is mentioned when no gRPC status arrived."""
        from core.errors import RpcStatusError
        from core.transport import GrpcStatus

        status = GrpcStatus()
        status.observe_headers([(":status", "503")])

        with pytest.raises(RpcStatusError, match="HTTP 503"):
            status.raise_for_status()


# ============================================================================
# Endpoint Parsing Tests
# ============================================================================

class TestParseEndpoint:
    """Test endpoint URL parsing."""

    def test_https_default_port(self):
        from core.transport import _parse_endpoint

        assert _parse_endpoint("https://rpc.production.succinct.xyz") == (
            "https", "rpc.production.succinct.xyz", 443, "rpc.production.succinct.xyz"
        )

    def test_explicit_port(self):
        from core.transport import _parse_endpoint

        assert _parse_endpoint("http://127.0.0.1:50051") == (
            "http", "127.0.0.1", 50051, "127.0.0.1:50051"
        )

    @pytest.mark.parametrize("endpoint", ["ftp://host", "rpc.example", ""])
    def test_unsupported(self, endpoint):
        """Only http and https endpoints are accepted."""
        from core.errors import ConnectError
        from core.transport import _parse_endpoint

        with pytest.raises(ConnectError):
            _parse_endpoint(endpoint)


# ============================================================================
# Session Lifecycle Tests
# ============================================================================

class TestGrpcSession:
    """Test session state on failure paths."""

    def test_initial_state(self):
        from core.transport import GrpcSession, SessionState

        session = GrpcSession("https://rpc.example")

        assert session.state == SessionState.CONNECTING
        assert not session.closed

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Refused connection is a ConnectError and leaves the session closed."""
        from core.errors import ConnectError
        from core.transport import GrpcSession, SessionState

        # Reserve a port, then free it so nothing listens there
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        session = GrpcSession(f"http://127.0.0.1:{port}", timeout=2.0)

        with pytest.raises(ConnectError):
            await session.unary_call(b"\x0a\x01\x01")

        assert session.state == SessionState.FAILED
        assert session.closed

    @pytest.mark.asyncio
    async def test_bad_endpoint(self):
        """Unsupported URL fails before connecting."""
        from core.errors import ConnectError
        from core.transport import GrpcSession, SessionState

        session = GrpcSession("ftp://example.com")

        with pytest.raises(ConnectError):
            await session.unary_call(b"")

        assert session.state == SessionState.FAILED
        assert session.closed

    def test_abort_is_idempotent(self):
        """abort() without a connection only marks the session closed."""
        from core.transport import GrpcSession

        session = GrpcSession("https://rpc.example")

        session.abort()
        session.abort()

        assert session.closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        from core.transport import GrpcSession

        session = GrpcSession("https://rpc.example")

        await session.close()
        await session.close()

        assert session.closed
