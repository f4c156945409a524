"""
Exporter HTTP Server

FastAPI application exposing a landing page and the canary metrics.
The cycle scheduler is started and stopped with the application lifespan,
so it shares the event loop of the uvicorn server.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse

from ..metrics.sink import PrometheusSink
from ..probing.scheduler import CycleScheduler

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"

LANDING_PAGE = f"""<html>
<head><title>Pyroscope Blackbox Exporter</title></head>
<body>
<h1>Pyroscope Blackbox Exporter</h1>
<p><a href="{METRICS_PATH}">Metrics</a></p>
</body>
</html>"""


def create_app(
    sink: PrometheusSink,
    scheduler: Optional[CycleScheduler] = None,
    run_immediately: bool = True,
) -> FastAPI:
    """
    Build the exporter application.

    Args:
        sink: Metrics to expose on ``/metrics``
        scheduler: Started as a background task for the app's lifetime, if given
        run_immediately: Whether the scheduler runs a cycle as soon as it starts
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if scheduler is not None:
            task = asyncio.create_task(scheduler.run(immediate=run_immediately), name="canary-scheduler")
        try:
            yield
        finally:
            if task is not None:
                scheduler.stop()
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="Pyroscope Canary Exporter", lifespan=lifespan, docs_url=None, redoc_url=None)

    @app.get("/", response_class=HTMLResponse)
    async def landing_page():
        return LANDING_PAGE

    @app.get(METRICS_PATH)
    async def metrics(request: Request):
        body, content_type = sink.render(request.headers.get("accept"))
        return Response(content=body, media_type=content_type)

    return app
