import uvicorn
import os
import socket
import sys
from typing import Optional
from constants import HOST, PORT, MAX_PORT_ATTEMPTS, LOG_LEVEL, LOG_FILE
from logging_config import get_logger, setup_logging

# Setup logging before uvicorn imports the app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(host: str, start_port: int, attempts: int = MAX_PORT_ATTEMPTS) -> Optional[int]:
    """Return the first bindable port in [start_port, start_port + attempts)."""
    for port in range(start_port, start_port + attempts):
        if port_is_free(host, port):
            return port
        logger.warning(f"[WARNING] Port {port} is in use, trying port {port + 1}...")
    return None


def main():
    port = find_available_port(HOST, PORT, MAX_PORT_ATTEMPTS)
    if port is None:
        logger.error(f"[ERROR] Could not find an available port after {MAX_PORT_ATTEMPTS} attempts")
        sys.exit(1)

    logger.info(f"Starting ChatSphere server on {HOST}:{port}")
    logger.info(f"WebSocket endpoint: ws://localhost:{port}/ws")
    uvicorn.run("app:app", host=HOST, port=port, reload=bool(os.getenv("RELOAD")))


if __name__ == "__main__":
    main()
