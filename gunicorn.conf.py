"""
Gunicorn configuration for the Discore API.

Run with:  gunicorn discore.main:app -c gunicorn.conf.py

Env vars that override defaults:
  PORT     TCP port to bind
  WORKERS  number of worker processes (default: 1)

Every worker runs its own lifespan and therefore its own hourly scheduler.
Keep WORKERS=1 unless SCHEDULER_ENABLED=false on all but one process.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

workers = int(os.environ.get("WORKERS", "1"))

# Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# A manual /analyze call waits for a whole batch of model calls.
timeout = 300

loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sus'

# Let in-flight analysis runs drain before the worker exits.
graceful_timeout = 60
