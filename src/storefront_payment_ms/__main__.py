"""Entry point for running the Payment Microservice."""

import uvicorn

from storefront_payment_ms.shared.core.logging import configure_logging
from storefront_payment_ms.shared.core.settings import get_settings


def main() -> None:
    """Run the FastAPI application."""
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "storefront_payment_ms.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
