from __future__ import annotations

import logging
import os
import sys

import uvicorn

from metasearch.api.main import app


def run() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    host = os.getenv("METASEARCH_HOST", "127.0.0.1")
    port = int(os.getenv("METASEARCH_PORT", "8765"))
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run()
