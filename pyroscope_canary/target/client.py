"""
Pyroscope API Client

Ingests the canary's synthetic profile and queries it back through the
Pyroscope HTTP APIs: the legacy ``/ingest`` endpoint, the Connect-protocol
``querier.v1.QuerierService`` (JSON encoding) and the ``/pyroscope/render``
endpoints.

Every operation takes the ``httpx.AsyncClient`` of the current probe
execution, so each probe gets its own instrumented transport.
"""

import logging
import socket
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from ..errors import TargetAPIError, UnexpectedResponseError

logger = logging.getLogger(__name__)


SERVICE_NAME = "pyroscope-canary-exporter"
PROFILE_TYPE_ID = "process_cpu:cpu:nanoseconds:cpu:nanoseconds"
USER_AGENT = "pyroscope-canary-exporter"
QUERIER_SERVICE = "/querier.v1.QuerierService"

# Folded stacks of the synthetic profile (stack -> samples)
SYNTHETIC_STACKS = {
    "main;canary;ingest;encode": 100,
    "main;canary;ingest;compress": 50,
    "main;canary;query;decode": 25,
}

QUERY_WINDOW = timedelta(minutes=5)
INGEST_DURATION = timedelta(seconds=10)


def default_hostname() -> str:
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


class PyroscopeClient:
    """
    Client for the Pyroscope cell under test.

    Args:
        url: Base URL of the Pyroscope cell
        tenant_id: Tenant sent as ``X-Scope-OrgID`` (multi-tenant cells)
        username: Basic auth username
        password: Basic auth password
        hostname: Value of the ``hostname`` label on the synthetic profile
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        url: str,
        tenant_id: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        hostname: Optional[str] = None,
        timeout: float = 10.0,
    ):
        self.url = url.rstrip("/")
        self.tenant_id = tenant_id
        self.username = username
        self.password = password
        self.hostname = hostname or default_hostname()
        self.timeout = timeout

    def build_client(self, transport: httpx.AsyncBaseTransport) -> httpx.AsyncClient:
        """Create the HTTP client for one probe execution."""
        headers = {"User-Agent": USER_AGENT}
        if self.tenant_id:
            headers["X-Scope-OrgID"] = self.tenant_id

        auth = None
        if self.username:
            auth = httpx.BasicAuth(self.username, self.password or "")

        return httpx.AsyncClient(
            base_url=self.url,
            transport=transport,
            headers=headers,
            auth=auth,
            timeout=self.timeout,
            follow_redirects=True,
        )

    # ------------------------------------------------------------------
    # Selectors and time ranges
    # ------------------------------------------------------------------

    @property
    def label_selector(self) -> str:
        return f'{{service_name="{SERVICE_NAME}",hostname="{self.hostname}"}}'

    @property
    def query(self) -> str:
        return f"{PROFILE_TYPE_ID}{self.label_selector}"

    @staticmethod
    def _window_ms(now: datetime) -> Dict[str, int]:
        return {
            "start": int((now - QUERY_WINDOW).timestamp() * 1000),
            "end": int((now + QUERY_WINDOW).timestamp() * 1000),
        }

    @staticmethod
    def _window_s(now: datetime) -> Dict[str, int]:
        return {
            "from": int((now - QUERY_WINDOW).timestamp()),
            "until": int((now + QUERY_WINDOW).timestamp()),
        }

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check(operation: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise TargetAPIError(operation, response.status_code, response.text)

    async def _call(self, client: httpx.AsyncClient, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Unary Connect call with the JSON codec"""
        response = await client.post(
            f"{QUERIER_SERVICE}/{method}",
            json=payload,
            headers={"Connect-Protocol-Version": "1"},
        )
        self._check(method, response)
        if not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def synthetic_profile(self) -> bytes:
        return "\n".join(f"{stack} {value}" for stack, value in SYNTHETIC_STACKS.items()).encode()

    async def ingest_profile(self, client: httpx.AsyncClient, now: datetime) -> None:
        """Push the synthetic profile for ``[now - 10s, now]``."""
        params = {
            "name": f"{SERVICE_NAME}.cpu{{hostname={self.hostname}}}",
            "from": int((now - INGEST_DURATION).timestamp()),
            "until": int(now.timestamp()),
            "format": "folded",
            "sampleRate": 100,
            "spyName": "gospy",
        }
        logger.debug(f"Ingesting synthetic profile: name={params['name']} from={params['from']} until={params['until']}")
        response = await client.post("/ingest", params=params, content=self.synthetic_profile())
        self._check("Ingest", response)

    # ------------------------------------------------------------------
    # Query probes
    # ------------------------------------------------------------------

    async def select_merge_profile(self, client: httpx.AsyncClient, now: datetime) -> None:
        profile = await self._call(client, "SelectMergeProfile", {
            "profileTypeID": PROFILE_TYPE_ID,
            "labelSelector": self.label_selector,
            **self._window_ms(now),
        })
        if not profile.get("sample"):
            raise UnexpectedResponseError("merged profile contains no samples")

    async def profile_types(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "ProfileTypes", self._window_ms(now))
        ids: List[str] = [t.get("ID", "") for t in result.get("profileTypes", [])]
        if PROFILE_TYPE_ID not in ids:
            raise UnexpectedResponseError(f"profile type {PROFILE_TYPE_ID} not found in {ids}")

    async def series(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "Series", {
            "matchers": [self.label_selector],
            "labelNames": ["service_name", "hostname"],
            **self._window_ms(now),
        })
        if not result.get("labelsSet"):
            raise UnexpectedResponseError("no series returned")

    async def label_names(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "LabelNames", {
            "matchers": [self.label_selector],
            **self._window_ms(now),
        })
        if "hostname" not in result.get("names", []):
            raise UnexpectedResponseError("label name 'hostname' not found")

    async def label_values(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "LabelValues", {
            "name": "hostname",
            "matchers": [self.label_selector],
            **self._window_ms(now),
        })
        if self.hostname not in result.get("names", []):
            raise UnexpectedResponseError(f"hostname {self.hostname} not found in label values")

    async def select_series(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "SelectSeries", {
            "profileTypeID": PROFILE_TYPE_ID,
            "labelSelector": self.label_selector,
            "groupBy": ["hostname"],
            "step": 15.0,
            **self._window_ms(now),
        })
        if not result.get("series"):
            raise UnexpectedResponseError("no series returned")

    async def select_merge_stacktraces(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "SelectMergeStacktraces", {
            "profileTypeID": PROFILE_TYPE_ID,
            "labelSelector": self.label_selector,
            **self._window_ms(now),
        })
        if not result.get("flamegraph"):
            raise UnexpectedResponseError("no flamegraph returned")

    async def select_merge_span_profile(self, client: httpx.AsyncClient, now: datetime) -> None:
        # The synthetic profile carries no span IDs; this only checks the endpoint answers.
        await self._call(client, "SelectMergeSpanProfile", {
            "profileTypeID": PROFILE_TYPE_ID,
            "labelSelector": self.label_selector,
            "spanSelector": ["0000000000000001"],
            **self._window_ms(now),
        })

    async def get_profile_stats(self, client: httpx.AsyncClient, now: datetime) -> None:
        result = await self._call(client, "GetProfileStats", {})
        if not result.get("dataIngested"):
            raise UnexpectedResponseError("profile stats report no ingested data")

    async def render(self, client: httpx.AsyncClient, now: datetime) -> None:
        response = await client.get("/pyroscope/render", params={
            "query": self.query,
            "format": "json",
            **self._window_s(now),
        })
        self._check("Render", response)
        if not response.json().get("flamebearer"):
            raise UnexpectedResponseError("render returned no flamebearer")

    async def render_diff(self, client: httpx.AsyncClient, now: datetime) -> None:
        window = self._window_s(now)
        response = await client.get("/pyroscope/render-diff", params={
            "leftQuery": self.query,
            "leftFrom": window["from"],
            "leftUntil": window["until"],
            "rightQuery": self.query,
            "rightFrom": window["from"],
            "rightUntil": window["until"],
            "format": "json",
        })
        self._check("RenderDiff", response)
        if not response.json().get("flamebearer"):
            raise UnexpectedResponseError("render-diff returned no flamebearer")
