"""
Gunicorn configuration for MindLedger reports production deployment.

Usage:
    gunicorn app.main:app -c gunicorn.conf.py

With REPORT_SCHEDULER_ENABLED=true every worker starts a scheduler thread;
the PostgreSQL advisory lock lets only one of them run each batch.
"""

import multiprocessing

# Bind to all interfaces on port 8000
bind = "0.0.0.0:8000"

# Worker processes: CPU cores * 2 + 1 (Gunicorn recommendation)
workers = multiprocessing.cpu_count() * 2 + 1

# Use Uvicorn's ASGI worker for FastAPI
worker_class = "uvicorn.workers.UvicornWorker"

# Request timeout (seconds); on-demand generation renders a PDF synchronously
timeout = 120

# Let an in-flight report batch observe cancellation on shutdown
graceful_timeout = 45

# Keep-alive connections (seconds)
keepalive = 5

# Logging
accesslog = "-"  # stdout
errorlog = "-"   # stderr
loglevel = "info"
