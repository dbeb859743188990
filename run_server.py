#!/usr/bin/env python
"""
Server Entry Point

Starts the Game Analytics API, or the background worker that owns the counter
consumer and the rollup scheduler.
Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py --gunicorn
    Worker:       python run_server.py --worker

    Or with Gunicorn:
    gunicorn game_analytics.main:app -c gunicorn.conf.py
"""

import argparse
import os
import subprocess


def run_dev_server(port: int):
    """Run development server with auto-reload."""
    import uvicorn

    uvicorn.run(
        "game_analytics.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=["game_analytics"],
        log_level="debug",
    )


def run_prod_server(port: int):
    """Run a single Uvicorn process."""
    import uvicorn

    from game_analytics.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "game_analytics.main:app",
        host=settings.api_host,
        port=port,
        log_level=os.getenv("LOG_LEVEL", "info"),
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn():
    """Run with Gunicorn (recommended for production)."""
    subprocess.run(["gunicorn", "game_analytics.main:app", "-c", "gunicorn.conf.py"], check=True)


def run_worker():
    """Run the consumer and scheduler; deploy one per database."""
    from game_analytics.worker import main

    main()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Game Analytics API Server")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dev", action="store_true", help="Development mode with auto-reload")
    mode.add_argument("--gunicorn", action="store_true", help="Run with Gunicorn (production)")
    mode.add_argument("--worker", action="store_true", help="Run the background worker instead of the API")
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", 8000)))

    args = parser.parse_args()

    if args.worker:
        print("⚙️  Starting background worker...")
        run_worker()
    elif args.dev:
        print("🚀 Starting development server...")
        run_dev_server(args.port)
    elif args.gunicorn:
        print("🚀 Starting production server with Gunicorn...")
        os.environ["BIND"] = f"0.0.0.0:{args.port}"
        run_gunicorn()
    else:
        print("🚀 Starting production server...")
        run_prod_server(args.port)
