"""Gunicorn configuration for serving research_fetch.server:app.

PORT is set by the hosting platform; defaults suit a single small instance.
"""

import multiprocessing
import os

port = os.environ.get("PORT", "8080")
bind = f"0.0.0.0:{port}"

# Each worker runs whole research sessions in its event loop
workers = int(os.environ.get("GUNICORN_WORKERS", min(2, multiprocessing.cpu_count())))
worker_class = "uvicorn.workers.UvicornWorker"

# Streaming sessions may run up to the server's 600 s maximum duration
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "660"))
graceful_timeout = int(os.environ.get("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.environ.get("GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"

wsgi_app = "research_fetch.server:app"
