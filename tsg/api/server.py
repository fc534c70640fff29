"""Process entrypoint serving the app factory with uvicorn."""

from __future__ import annotations

import uvicorn

from tsg.config.settings import load_settings


def main() -> None:
    """Serve the gateway on the configured bind address and port."""
    settings = load_settings()
    # log_config=None keeps the JSON root handler installed by create_app.
    uvicorn.run(
        "tsg.api.app:create_app",
        factory=True,
        host=settings.bind,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
