"""
Instrumented Transport

An ``httpx`` transport that records the lifecycle of every round trip of a
probe: DNS, TCP connect, TLS handshake, first response byte and body
completion. It also reports response metadata and certificate facts as
each response arrives.

One transport is built per probe execution and owns that probe's
:class:`~.schemas.ProbeRun`. Each round trip gets its own
:class:`~.phase_trace.PhaseTrace`, bound into that round trip's event hook,
so hooks can never write into another round trip's trace.

The transport resolves host names itself to time the DNS phase, then hands
the wrapped transport a copy of the request pinned to the resolved address,
so the name is looked up exactly once per round trip.
"""

import asyncio
import inspect
import ipaddress
import logging
import socket
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx

from . import tls_inspector
from .phase_trace import PhaseTrace
from .recorder import ProbeRecorder
from .schemas import ProbeRun

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[Any]]
TraceCallback = Callable[[str, Dict[str, Any]], Any]


# httpcore trace events -> PhaseTrace hook
TRACE_EVENT_HOOKS = {
    "connection.connect_tcp.started": PhaseTrace.mark_connect_start,
    "connection.connect_tcp.complete": PhaseTrace.mark_connect_done,
    "connection.connect_tcp.failed": PhaseTrace.mark_connect_done,
    "connection.connect_unix_socket.started": PhaseTrace.mark_connect_start,
    "connection.connect_unix_socket.complete": PhaseTrace.mark_connect_done,
    "connection.start_tls.started": PhaseTrace.mark_tls_start,
    "connection.start_tls.complete": PhaseTrace.mark_tls_done,
    "connection.start_tls.failed": PhaseTrace.mark_tls_done,
    "http11.send_request_headers.started": PhaseTrace.mark_got_conn,
    "http2.send_connection_init.started": PhaseTrace.mark_got_conn,
    "http2.send_request_headers.started": PhaseTrace.mark_got_conn,
    "http11.receive_response_headers.complete": PhaseTrace.mark_response_start,
    "http2.receive_response_headers.complete": PhaseTrace.mark_response_start,
}


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


async def system_resolver(host: str, port: int) -> Any:
    """Resolve ``host`` the same way the connection will (``getaddrinfo``)"""
    loop = asyncio.get_running_loop()
    return await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)


def parse_http_version(version: str) -> float:
    """``HTTP/1.1`` -> 1.1, ``HTTP/2`` -> 2.0"""
    return float(version.strip().upper().replace("HTTP/", "", 1))


class CountingByteStream(httpx.AsyncByteStream):
    """Response body stream that counts every byte handed to the reader"""

    def __init__(self, stream: httpx.AsyncByteStream, run: ProbeRun):
        self._stream = stream
        self._run = run

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._stream:
            self._run.add_body_bytes(len(chunk))
            yield chunk

    async def aclose(self) -> None:
        await self._stream.aclose()


class InstrumentedTransport(httpx.AsyncBaseTransport):
    """
    Transport wrapper keeping a trace per HTTP round trip.

    Args:
        transport: The transport that actually performs the requests
        run: Probe run receiving traces and body byte counts
        recorder: Destination for response and TLS metrics
        resolver: Coroutine used to time the DNS phase; defaults to
            ``getaddrinfo`` on the running loop
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        run: ProbeRun,
        recorder: ProbeRecorder,
        resolver: Optional[Resolver] = None,
    ):
        self.transport = transport
        self.run = run
        self.recorder = recorder
        self.resolver = resolver or system_resolver

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        logger.debug(f"Making HTTP request: url={request.url} host={request.url.host}")

        trace = self.run.new_trace(is_tls=request.url.scheme == "https")
        address = await self._resolve(request, trace)

        response = await self.transport.handle_async_request(self._pinned_request(request, address, trace))

        self._record_tls(response)
        self._record_response(response)

        return httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            stream=CountingByteStream(response.stream, self.run),
            extensions=response.extensions,
            request=request,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    # ------------------------------------------------------------------
    # Round trip lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def _trace_hook(trace: PhaseTrace, previous: Optional[TraceCallback]) -> TraceCallback:
        async def hook(event_name: str, info: Dict[str, Any]) -> None:
            mark = TRACE_EVENT_HOOKS.get(event_name)
            if mark is not None:
                mark(trace)
            if previous is not None:
                result = previous(event_name, info)
                if inspect.isawaitable(result):
                    await result

        return hook

    def _pinned_request(self, request: httpx.Request, address: Optional[str], trace: PhaseTrace) -> httpx.Request:
        """
        Copy of ``request`` for the wrapped transport, bound to ``trace``.

        When the host was resolved here, the copy targets that address so the
        connection pool does not look the name up a second time. The original
        name is kept in the ``Host`` header and as the TLS server name. The
        caller's request is left untouched, so redirect hops built from it
        only ever carry the caller's own trace callback.
        """
        extensions = {
            **request.extensions,
            "trace": self._trace_hook(trace, request.extensions.get("trace")),
        }

        url = request.url
        if address is not None:
            url = url.copy_with(host=address)
            extensions.setdefault("sni_hostname", request.url.host)

        return httpx.Request(
            method=request.method,
            url=url,
            headers=request.headers,
            stream=request.stream,
            extensions=extensions,
        )

    async def _resolve(self, request: httpx.Request, trace: PhaseTrace) -> Optional[str]:
        """
        Time name resolution and return the address to connect to.

        IP literals are not resolved (None is returned); the connect-start
        backfill then gives them a zero resolve phase.
        """
        host = request.url.host
        if not host or _is_ip_literal(host):
            return None

        port = request.url.port or (443 if request.url.scheme == "https" else 80)
        trace.mark_dns_start()
        try:
            addresses = await self.resolver(host, port)
        except OSError as exc:
            raise httpx.ConnectError(f"DNS lookup for {host} failed: {exc}", request=request) from exc
        finally:
            trace.mark_dns_done()

        if not addresses:
            raise httpx.ConnectError(f"DNS lookup for {host} returned no addresses", request=request)

        # getaddrinfo entries are (family, type, proto, canonname, sockaddr)
        return addresses[0][4][0]

    # ------------------------------------------------------------------
    # Response metadata
    # ------------------------------------------------------------------

    def _record_response(self, response: httpx.Response) -> None:
        try:
            content_length = int(response.headers.get("content-length", -1))
        except ValueError:
            content_length = -1

        try:
            http_version = parse_http_version(response.http_version)
        except ValueError as exc:
            logger.error(f"Error parsing version number from HTTP version {response.http_version!r}: {exc}")
            http_version = 0.0

        self.recorder.record_response(self.run.name, response.status_code, content_length, http_version)

    def _record_tls(self, response: httpx.Response) -> None:
        network_stream = response.extensions.get("network_stream")
        if network_stream is None:
            return

        ssl_object = network_stream.get_extra_info("ssl_object")
        if ssl_object is None:
            return

        try:
            state = tls_inspector.connection_state_from_ssl_object(ssl_object)
        except tls_inspector.CERTIFICATE_ERRORS as exc:
            logger.error(f"Failed to read TLS certificates for probe {self.run.name}: {exc}")
            return

        self.recorder.record_tls(tls_inspector.inspect(state))
