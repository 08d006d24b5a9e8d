"""Run the API with uvicorn: `python -m todo_api`."""

import uvicorn

from .config import settings


def main() -> None:
    # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown
    uvicorn.run(
        "todo_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
