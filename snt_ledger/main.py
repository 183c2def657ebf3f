"""API server entry point."""

import argparse
import logging

import uvicorn
from dotenv import load_dotenv

from snt_ledger.api.app import app
from snt_ledger.config import settings
from snt_ledger.services.logging import setup_server_logging

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="SNT Ledger API server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    setup_server_logging(settings.log_file)
    logger.info("Starting Uvicorn server on %s:%d...", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
