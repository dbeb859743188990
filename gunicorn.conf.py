"""
Production Server Configuration

Run the API with Uvicorn workers under Gunicorn. Background tasks (counter
consumer and rollup scheduler) belong in the separate worker process; running
them in every Gunicorn worker would start several schedulers.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"0.0.0.0:{os.getenv('API_PORT', '8000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = 120
keepalive = 5
graceful_timeout = 30

# Process naming
proc_name = "game-analytics-api"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)s'


# Hooks
def on_starting(server):
    """Refuse in-process background tasks with more than one worker."""
    background = os.getenv("ANALYTICS_RUN_BACKGROUND_TASKS", "false").lower() in ("1", "true", "yes")
    if background and workers > 1:
        raise RuntimeError(
            "ANALYTICS_RUN_BACKGROUND_TASKS requires WORKERS=1; "
            "run `python -m game_analytics.worker` instead"
        )


def when_ready(server):
    server.log.info("Game Analytics API ready on %s", bind)
