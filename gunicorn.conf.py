"""
Gunicorn configuration for loyalcard.

    gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Workers share rate-limit counters only through Redis (REDIS_URL)
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'loyalcard'

preload_app = True
graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting loyalcard server...")


def on_exit(server):
    print("[Gunicorn] loyalcard server shutting down...")
