"""
Load environment variables for host and port, creates the Flask app instance,
and starts the development server.

Environment Variables
---------------------
HOST: The interface/IP the server should bind to. Defaults to "127.0.0.1".
PORT: The port number the server should listen on. Defaults to "2929".
LOG_LEVEL: Logging level name. Defaults to "INFO".
"""

import logging
from os import getenv

from app import create_app


def main() -> None:
    """
    Resolve host, port and log level from env variables, instantiate app
    via create_app(), and start the server.
    """
    logging.basicConfig(
        level=getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = getenv("HOST", "127.0.0.1")
    port = int(getenv("PORT", "2929"))

    app = create_app()
    app.run(host=host, port=port)


if __name__ == "__main__":
    main()
