"""
Gunicorn configuration for the rewards engine.
"""
import os

# Bind to the platform's PORT or default
bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Worker configuration
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 300  # Apply runs over the whole population
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

# Process naming
proc_name = 'rewards-engine'

# Preload so the scheduler starts once, in the master
preload_app = True

# Graceful restart
graceful_timeout = 30


def on_starting(server):
    server.log.info('[Gunicorn] Starting rewards engine...')


def on_exit(server):
    server.log.info('[Gunicorn] Rewards engine shutting down...')
