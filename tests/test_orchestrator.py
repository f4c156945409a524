"""
Tests for the canary orchestrator
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from pyroscope_canary.errors import IngestError, QueryProbesError
from pyroscope_canary.metrics import sink as m
from pyroscope_canary.probing.catalog import Probe, ProbeCatalog
from pyroscope_canary.probing.orchestrator import CanaryOrchestrator
from pyroscope_canary.target.client import PyroscopeClient


NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


async def ok_handler(request):
    hook = request.extensions["trace"]
    for event in (
        "connection.connect_tcp.started",
        "connection.connect_tcp.complete",
        "http11.send_request_headers.started",
        "http11.receive_response_headers.complete",
    ):
        await hook(event, {})
    return httpx.Response(200, content=b"profile")


async def fetch(client, now):
    response = await client.get("/ready")
    response.raise_for_status()


@pytest.fixture
def api():
    return PyroscopeClient("http://127.0.0.1:4040", hostname="canary-test")


def orchestrator_for(api, sink, catalog, handler=ok_handler, test_delay=0):
    return CanaryOrchestrator(
        api,
        catalog,
        sink,
        test_delay=test_delay,
        transport_factory=lambda: httpx.MockTransport(handler),
    )


class TestRunCycle:
    """Tests for CanaryOrchestrator.run_cycle"""

    @pytest.mark.asyncio
    async def test_successful_cycle(self, api, sink):
        catalog = ProbeCatalog(
            ingest=Probe("ingest", fetch),
            queries=[Probe("query-select-merge-profile", fetch)],
        )
        orchestrator = orchestrator_for(api, sink, catalog)

        result = await orchestrator.run_cycle(NOW)

        assert result.success
        assert result.error is None
        assert result.ingest.success
        assert [run.name for run in result.queries] == ["query-select-merge-profile"]
        for name in ("ingest", "query-select-merge-profile"):
            assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": name}) == 1.0
            assert sink.get_sample_value(m.PROBE_HTTP_UNCOMPRESSED_BODY_LENGTH, {"name": name}) == 7.0
            assert sink.get_sample_value(m.PROBE_HTTP_STATUS_CODE, {"name": name}) == 200.0
            for phase in ("resolve", "connect", "processing", "transfer"):
                assert sink.get_sample_value(
                    f"{m.PROBE_HTTP_DURATION_SECONDS}_count", {"name": name, "phase": phase}
                ) == 1.0
            assert sink.get_sample_value(
                f"{m.PROBE_HTTP_DURATION_SECONDS}_count", {"name": name, "phase": "tls"}
            ) is None

    @pytest.mark.asyncio
    async def test_ingest_failure_skips_queries(self, api, sink):
        boom = RuntimeError("connection refused")
        query = AsyncMock()
        catalog = ProbeCatalog(
            ingest=Probe("ingest", AsyncMock(side_effect=boom)),
            queries=[Probe("query-select-merge-profile", query)],
        )
        orchestrator = orchestrator_for(api, sink, catalog)

        result = await orchestrator.run_cycle(NOW)

        assert isinstance(result.error, IngestError)
        assert result.error.error is boom
        assert result.error.__cause__ is boom
        assert str(result.error) == "error during ingestion: connection refused"
        assert result.queries == []
        query.assert_not_awaited()
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "ingest"}) == 0.0
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "query-select-merge-profile"}) is None

    @pytest.mark.asyncio
    async def test_query_failures_are_collected(self, api, sink):
        queries = [
            Probe("q1", AsyncMock()),
            Probe("q2", AsyncMock(side_effect=ValueError("empty profile"))),
            Probe("q3", AsyncMock()),
            Probe("q4", AsyncMock(side_effect=httpx.ReadTimeout("timed out"))),
            Probe("q5", AsyncMock()),
        ]
        catalog = ProbeCatalog(ingest=Probe("ingest", AsyncMock()), queries=queries)
        orchestrator = orchestrator_for(api, sink, catalog)

        result = await orchestrator.run_cycle(NOW)

        assert isinstance(result.error, QueryProbesError)
        assert str(result.error) == "2 error(s) reported from query probes"
        assert result.error.failed == 2
        assert result.error.total == 5
        assert set(result.error.errors) == {"q2", "q4"}
        assert "q2: empty profile" in result.error.details()

        for probe in queries:
            probe.func.assert_awaited_once()
        assert [run.success for run in result.queries] == [True, False, True, False, True]
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "q2"}) == 0.0
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "q3"}) == 1.0

    @pytest.mark.asyncio
    async def test_probes_receive_cycle_time(self, api, sink):
        ingest = AsyncMock()
        query = AsyncMock()
        catalog = ProbeCatalog(ingest=Probe("ingest", ingest), queries=[Probe("q", query)])
        orchestrator = orchestrator_for(api, sink, catalog)

        await orchestrator.run_cycle(NOW)

        assert ingest.await_args.args[1] == NOW
        assert query.await_args.args[1] == NOW
        assert isinstance(ingest.await_args.args[0], httpx.AsyncClient)

    @pytest.mark.asyncio
    async def test_delay_between_ingest_and_queries(self, api, sink):
        order = []

        async def ingest(client, now):
            order.append(("ingest", asyncio.get_running_loop().time()))

        async def query(client, now):
            order.append(("query", asyncio.get_running_loop().time()))

        catalog = ProbeCatalog(ingest=Probe("ingest", ingest), queries=[Probe("q", query)])
        orchestrator = orchestrator_for(api, sink, catalog, test_delay=0.05)

        await orchestrator.run_cycle(NOW)

        assert [name for name, _ in order] == ["ingest", "query"]
        assert order[1][1] - order[0][1] >= 0.04

    @pytest.mark.asyncio
    async def test_each_probe_gets_a_fresh_transport(self, api, sink):
        built = []

        def factory():
            transport = httpx.MockTransport(ok_handler)
            built.append(transport)
            return transport

        catalog = ProbeCatalog(
            ingest=Probe("ingest", fetch),
            queries=[Probe("q1", fetch), Probe("q2", fetch)],
        )
        orchestrator = CanaryOrchestrator(api, catalog, sink, test_delay=0, transport_factory=factory)

        await orchestrator.run_cycle(NOW)

        assert len(built) == 3
        assert len({id(t) for t in built}) == 3


class TestRunProbe:
    """Tests for CanaryOrchestrator.run_probe"""

    @pytest.mark.asyncio
    async def test_http_error_status_fails_probe(self, api, sink):
        async def handler(request):
            return httpx.Response(503, content=b"unavailable")

        catalog = ProbeCatalog(ingest=Probe("ingest", fetch))
        orchestrator = orchestrator_for(api, sink, catalog, handler=handler)

        run = await orchestrator.run_probe(catalog.ingest, NOW)

        assert not run.success
        assert isinstance(run.error, httpx.HTTPStatusError)
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "ingest"}) == 0.0
        assert sink.get_sample_value(m.PROBE_HTTP_STATUS_CODE, {"name": "ingest"}) == 503.0

    @pytest.mark.asyncio
    async def test_cancelled_probe_still_records_failure(self, api, sink):
        async def hang(client, now):
            await asyncio.sleep(10)

        catalog = ProbeCatalog(ingest=Probe("ingest", hang))
        orchestrator = orchestrator_for(api, sink, catalog)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(orchestrator.run_probe(catalog.ingest, NOW), timeout=0.05)

        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "ingest"}) == 0.0

    @pytest.mark.asyncio
    async def test_transfer_excludes_client_teardown(self, api, sink):
        class SlowCloseTransport(httpx.MockTransport):
            async def aclose(self):
                await asyncio.sleep(0.2)

        catalog = ProbeCatalog(ingest=Probe("ingest", fetch))
        orchestrator = CanaryOrchestrator(
            api,
            catalog,
            sink,
            test_delay=0,
            transport_factory=lambda: SlowCloseTransport(ok_handler),
        )

        run = await orchestrator.run_probe(catalog.ingest, NOW)

        assert run.success
        transfer = sink.get_sample_value(
            f"{m.PROBE_HTTP_DURATION_SECONDS}_sum", {"name": "ingest", "phase": "transfer"}
        )
        assert transfer is not None
        assert transfer < 0.2

    @pytest.mark.asyncio
    async def test_transport_factory_failure_is_recorded(self, api, sink):
        def broken_factory():
            raise RuntimeError("no transport")

        catalog = ProbeCatalog(ingest=Probe("ingest", fetch))
        orchestrator = CanaryOrchestrator(api, catalog, sink, test_delay=0, transport_factory=broken_factory)

        run = await orchestrator.run_probe(catalog.ingest, NOW)

        assert not run.success
        assert str(run.error) == "no transport"
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "ingest"}) == 0.0


class TestCycleCancellation:
    """Tests for cycles interrupted by their deadline"""

    @pytest.mark.asyncio
    async def test_cancel_during_delay_skips_queries(self, api, sink):
        ingest = AsyncMock()
        query = AsyncMock()
        catalog = ProbeCatalog(ingest=Probe("ingest", ingest), queries=[Probe("q", query)])
        orchestrator = orchestrator_for(api, sink, catalog, test_delay=10)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(orchestrator.run_cycle(NOW), timeout=0.1)

        ingest.assert_awaited_once()
        query.assert_not_awaited()
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "ingest"}) == 1.0
        assert sink.get_sample_value(m.PROBE_SUCCESS, {"name": "q"}) is None
