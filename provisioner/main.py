import logging

from fastapi import FastAPI

from provisioner.api import get_control_plane, get_remote_guard, router
from provisioner.config import get_settings
from provisioner.db import configure_sqlite_runtime, engine
from provisioner.logging_config import configure_logging
from provisioner.models import Base


logger = logging.getLogger(__name__)


app = FastAPI(title="VM Provisioning Compiler")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    settings = get_settings()
    if not settings.vsphere_url:
        raise RuntimeError("VSPHERE_URL is required")

    configure_sqlite_runtime()
    Base.metadata.create_all(bind=engine)
    logger.info(
        "provisioner startup complete vsphere_url=%s remote_timeout_sec=%s",
        settings.vsphere_url,
        settings.remote_call_timeout_sec,
    )


@app.on_event("shutdown")
def shutdown() -> None:
    if get_remote_guard.cache_info().currsize:
        get_remote_guard().shutdown()
    if get_control_plane.cache_info().currsize:
        get_control_plane().close()
