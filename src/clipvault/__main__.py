import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

import uvicorn

from clipvault.config import Settings

logger = logging.getLogger("clipvault")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s: %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="clipvault screenshot and OCR clipboard service")
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    parser.add_argument("--host", default=None, help="Bind address (overrides CLIPVAULT_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port (overrides CLIPVAULT_PORT)")
    parser.add_argument("--backend", choices=["memory", "redis"], default=None,
                        help="Blob backend (overrides CLIPVAULT_BLOB_BACKEND)")
    args = parser.parse_args()

    settings = Settings.from_env(env_path=args.env_file)
    if args.backend:
        settings = replace(settings, blob_backend=args.backend)
    configure_logging(settings.log_level)

    from clipvault.api.main import create_app
    from clipvault.services.clipboard_service import build_service

    service = build_service(settings)
    if not service.settings.admin_key:
        logger.warning("CLIPVAULT_ADMIN_KEY is not set; admin routes will deny every request")

    app = create_app(service)
    host = args.host or settings.host
    port = args.port or settings.port
    logger.info(f"Starting clipvault on {host}:{port} (backend={settings.blob_backend})")
    try:
        uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    finally:
        service.close()


if __name__ == "__main__":
    main()
