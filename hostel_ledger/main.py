"""Main application entry point."""

import argparse
import logging

import uvicorn
from dotenv import load_dotenv

from hostel_ledger.config import settings
from hostel_ledger.services.logging import setup_server_logging

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def main():
    """Run the ledger API server."""
    parser = argparse.ArgumentParser(description="Hostel fee ledger API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    setup_server_logging(log_file=settings.log_file, level=settings.log_level)
    logger.info(f"Starting Uvicorn server on {args.host}:{args.port}...")

    uvicorn.run(
        "hostel_ledger.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
