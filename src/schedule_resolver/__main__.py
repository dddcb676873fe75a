"""Run the schedule resolver API with uvicorn.

``python -m schedule_resolver`` serves the API; operational commands live in
``python -m schedule_resolver.cli``.
"""

import uvicorn

from schedule_resolver.config import get_settings


def main() -> None:
    """Serve the API using HOST/PORT/DEBUG/LOG_LEVEL from the environment."""
    settings = get_settings()
    uvicorn.run(
        "schedule_resolver.api.app:build_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
