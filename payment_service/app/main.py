import logging
from fastapi import FastAPI

from payment_service.app.api import router as api_router
from payment_service.app.fees_api import router as fees_router
from payment_service.app.settings import settings

logging.basicConfig(level=logging.INFO)


def create_app() -> FastAPI:
    app = FastAPI(title="payment_service")
    app.include_router(api_router)
    app.include_router(fees_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "payment_service.app.main:app",
        host=settings.SERVICE_HOST,
        port=settings.SERVICE_PORT,
        reload=False,
        workers=1,
    )
