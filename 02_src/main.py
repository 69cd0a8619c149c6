"""Main entry point for the agent service."""

from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from agent_service.api import create_fastapi_app
from agent_service.app import Application
from agent_service.config import Settings
from agent_service.logging_config import setup_logging


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")

    settings = Settings.from_env()
    setup_logging(settings)

    # Create FastAPI app
    app = create_fastapi_app(Application(settings))

    # Run with uvicorn; long keep-alive so SSE streams are not cut between events
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        log_config=None,
        timeout_keep_alive=65,
    )


if __name__ == "__main__":
    main()
