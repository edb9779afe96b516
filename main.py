"""
Invigilator - Main Entry Point

Usage:
    python main.py                      # Start API server (default)
    python main.py --port 8001          # Start on specific port
    python main.py --room interview-42  # Proctor one LiveKit room directly

API Endpoints:
    POST /join                     - Backend requests proctoring of a room
    POST /leave                    - Backend requests leaving a room
    GET  /status                   - Rooms and sessions being proctored
    GET  /health                   - Health check
    GET  /sessions/{id}            - Status, counters and last samples
    POST /sessions/{id}/terminate  - Host-requested termination
    POST /sessions/{id}/complete   - Interview finished
"""
from __future__ import annotations

import argparse
import asyncio

from invigilator.cfg import get_settings
from invigilator.utils.logger import get_logger, setup_logging

logger = get_logger("invigilator")


def main():
    """Main entry point."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Invigilator")
    parser.add_argument("--host", default=settings.api_host, help="Server host")
    parser.add_argument("--port", type=int, default=settings.api_port, help="Server port")
    parser.add_argument("--room", default=None, help="Proctor a LiveKit room instead of serving the API")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args()

    setup_logging(args.log_level)

    if args.room:
        from invigilator.service.room import main as run_room
        logger.info(f"🚀 Proctoring room {args.room}...")
        asyncio.run(run_room(args.room))
        return

    logger.info("🚀 Starting Invigilator API...")
    logger.info(f"📡 Listening on http://{args.host}:{args.port}")

    from invigilator.api.server import start_server
    start_server(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
