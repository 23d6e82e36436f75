import logging
import sys
import uuid
from typing import Any, MutableMapping

from provisioner.config import get_settings


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class CompileLogAdapter(logging.LoggerAdapter):
    """Prefixes every record with the compile id it belongs to."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        kwargs["extra"] = {**extra, **kwargs.get("extra", {})}
        return f"compile_id={extra.get('compile_id')} {msg}", kwargs


def compile_logger(name: str, compile_id: str | None = None) -> CompileLogAdapter:
    return CompileLogAdapter(
        logging.getLogger(name), {"compile_id": compile_id or uuid.uuid4().hex[:12]}
    )
