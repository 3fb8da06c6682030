#!/usr/bin/env python
"""
Server Entry Point

Starts the ShopSync dashboard API with Uvicorn.
Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py --workers 4
"""

import argparse
import os

import uvicorn


def run_dev_server(port: int) -> None:
    """Run development server with auto-reload."""
    uvicorn.run(
        "shopsync.main:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        reload_dirs=["shopsync"],
        log_level="debug",
    )


def run_prod_server(port: int, workers: int) -> None:
    """Run production server."""
    uvicorn.run(
        "shopsync.main:app",
        host="0.0.0.0",
        port=port,
        workers=workers,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        access_log=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="ShopSync Analytics API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", 8000)), help="Port to run on")
    parser.add_argument("--workers", type=int, default=int(os.getenv("WORKERS", 1)), help="Worker processes")
    args = parser.parse_args()

    if args.dev:
        run_dev_server(args.port)
    else:
        run_prod_server(args.port, args.workers)
