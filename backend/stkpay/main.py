"""
STK Pay Backend - Server Entry Point

Builds the application from environment settings for uvicorn:

    uvicorn stkpay.main:app
    python -m stkpay.main
"""
from .app import configure_logging, create_app
from .config import get_settings

configure_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "stkpay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
