"""
Run the SignBridge relay.

    python -m signbridge

Reads PORT, HOST and LOG_LEVEL (plus the SIGNBRIDGE_* settings) from the
environment.
"""

import logging

import uvicorn

from signbridge.config import RelayConfig
from signbridge.server import SignBridgeServer

logger = logging.getLogger("signbridge")


def main() -> None:
    config = RelayConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = SignBridgeServer(config)
    logger.info(f"SignBridge server running on port {config.port}")
    logger.info(f"Local: http://localhost:{config.port}")
    logger.info(f"WebSocket: ws://localhost:{config.port}")
    uvicorn.run(server.app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
