from sessiongate.logging_config import setup_logging
from sessiongate.routes import create_app
from sessiongate.settings import settings


# Configure logging once for the whole process.
setup_logging()

# FastAPI application instance for uvicorn; APP_ROLE selects gateway or backend.
app = create_app()


def run() -> None:
    import uvicorn

    port = 8000 if settings.app_role == "gateway" else 8001
    uvicorn.run("main:app", host="0.0.0.0", port=port, log_config=None)


if __name__ == "__main__":
    run()
