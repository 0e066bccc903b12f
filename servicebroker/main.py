from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import RedirectResponse

from servicebroker.api import instances
from servicebroker.api.utils import register_exception_handlers
from servicebroker.db import create_db_engine, init_db
from servicebroker.store import InstanceStore, SqlInstanceStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    engine = None
    if app.state.store is None:
        engine = create_db_engine()
        init_db(engine)
        app.state.store = SqlInstanceStore(engine)
        logger.info("Using SQL instance store at %s", engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        if engine is not None:
            engine.dispose()
            app.state.store = None


def create_app(store: Optional[InstanceStore] = None) -> FastAPI:
    """Build the broker app. Without a ``store`` one is created from ``DATABASE_URL`` on startup."""
    app = FastAPI(
        title="Service Broker",
        description="Provisions and deprovisions managed service instances",
        version="0.1.0",
        lifespan=_lifespan,
    )
    app.state.store = store

    @app.get("/", include_in_schema=False)
    def root() -> RedirectResponse:
        """Redirect root URL to Swagger UI docs."""
        return RedirectResponse(url="/docs")

    app.include_router(instances.router)
    register_exception_handlers(app)
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("servicebroker.main:app", host="0.0.0.0", port=8080, log_level="info")
