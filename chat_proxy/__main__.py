import logging
import sys

import uvicorn

from chat_proxy.config import ConfigError, ProxyConfig
from chat_proxy.vars import LOG_LEVEL

logger = logging.getLogger("uvicorn.error")


def main() -> None:
    logging.basicConfig(level=LOG_LEVEL)
    try:
        config = ProxyConfig.from_env()
    except ConfigError as e:
        logger.error(f"Invalid configuration, refusing to start: {e}")
        sys.exit(1)

    logger.info(f"Reverse proxy listening on http://{config.host}:{config.port}")
    logger.info(f"API calls {config.api_prefix}/* -> {config.api_url}")
    logger.info(f"Static files /* -> {config.static_root}/")
    logger.info(f"Health check available at {config.health_path}")

    uvicorn.run(
        "chat_proxy.server:app",
        host=config.host,
        port=config.port,
        log_level=LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
