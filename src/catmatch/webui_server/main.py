from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import uvicorn

from .app import build_services, create_app


def configure_logging(log_file: Path) -> None:
    """Rotating file log plus warnings on stderr; quiet the HTTP client libraries."""
    log_file.parent.mkdir(parents=True, exist_ok=True)

    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    fh.setFormatter(fmt)
    fh.setLevel(logging.DEBUG)

    # Startup banners go through print(), so stderr only needs warnings.
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(fh)
    root.addHandler(ch)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    for noisy in ("httpx", "urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def main() -> int:
    services = build_services()
    settings = services.settings
    configure_logging(settings.logs_dir / "server.log")

    uvicorn.run(
        create_app(services),
        host=settings.bind_host,
        port=settings.bind_port,
        log_config=None,
        access_log=False,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
