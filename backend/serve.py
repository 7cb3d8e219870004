from __future__ import annotations

import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load .env from backend dir (where serve.py runs)
load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def main() -> None:
    host = os.environ.get("HOST", "").strip() or "0.0.0.0"
    port = int(os.environ.get("PORT", "").strip() or 5000)
    logging.info("Starting EmotiLens API on http://%s:%d", host, port)
    uvicorn.run("app.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
