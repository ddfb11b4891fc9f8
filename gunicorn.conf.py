"""
Production Server Configuration

Run the ChecklistPro API with Uvicorn workers under Gunicorn.

The in-memory rate limiter is per worker, so the effective limit scales with
the worker count.
"""

import multiprocessing
import os

# Server socket
bind = os.getenv("BIND", f"0.0.0.0:{os.getenv('PORT', '5000')}")
backlog = 2048

# Worker processes
workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
# Payment provider calls happen inside checkout requests
timeout = 120
keepalive = 5
graceful_timeout = 30

# Process naming
proc_name = "checklistpro-api"

# Server mechanics
daemon = False
pidfile = os.getenv("GUNICORN_PIDFILE", "/tmp/checklistpro-gunicorn.pid")
tmp_upload_dir = None

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'


def when_ready(server):
    """Called when server is ready to receive connections."""
    server.log.info("ChecklistPro API ready on %s", bind)


def worker_abort(worker):
    """Called when worker receives SIGABRT signal."""
    worker.log.warning("Worker %s aborted (timeout?)", worker.pid)
