import logging

import uvicorn

from whatsapp_store.config import get_settings
from whatsapp_store.main import app

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logger.info(f"Server running on port {settings.PORT}")
    logger.info(f"Health check: http://localhost:{settings.PORT}/health")
    # log_config=None keeps the JSON logging configured by create_app
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    main()
