import logging
import sys
from fastapi import FastAPI

from notification_service.app.messaging.consumer import start_consumers
from notification_service.app.settings import settings

logger = logging.getLogger("notification_service")
logger.setLevel(logging.INFO)

# Reuse uvicorn handlers when available, otherwise fall back to stdout.
uvicorn_logger = logging.getLogger("uvicorn.error")
if uvicorn_logger.handlers:
    for handler in uvicorn_logger.handlers:
        logger.addHandler(handler)
else:
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(stream_handler)


def create_app(start_consuming: bool = True) -> FastAPI:
    app = FastAPI(title="notification_service")

    @app.on_event("startup")
    def _startup() -> None:
        if not start_consuming:
            return
        # SMS silently stops flowing if the consumer is down, so fail loudly.
        try:
            start_consumers()
            logger.info("Notification consumers started (dry_run=%s).", settings.DRY_RUN)
        except Exception as exc:
            logger.exception("Failed to start notification consumers", exc_info=exc)
            raise

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "notification-service"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "notification_service.app.main:app",
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        reload=False,
        workers=1,
    )
