from __future__ import annotations

import logging
import sys

import uvicorn

from .envs.marketplace_env import get_settings


def main() -> None:
    """Main entry point for the marketplace application."""

    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.api_debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"Starting {settings.app_name} v{settings.app_version}")
    print(f"Client wallet: {settings.client_wallet_address}")
    print(f"Merchant wallet: {settings.merchant_wallet_address}")
    print(f"API will be available at: http://{settings.api_host}:{settings.api_port}")
    print(f"API Documentation: http://{settings.api_host}:{settings.api_port}/docs")
    if not settings.signing_configured:
        print("Warning: no signing key configured; purchases are disabled")

    # Pending payments live in process memory, so the app runs as a single
    # worker: every step of a purchase must reach the same process.
    uvicorn.run(
        "paylink.api.marketplace_api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        workers=1,
        loop="auto" if sys.platform == "win32" else "uvloop",
        log_level="debug" if settings.api_debug else "info",
    )


if __name__ == "__main__":
    main()
