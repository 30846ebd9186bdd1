import uvicorn

from studywell.reminders.config import get_settings
from studywell.reminders.service import create_app

app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "studywell.main:app",
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
