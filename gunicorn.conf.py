"""Gunicorn configuration file.

Each worker builds its own application (and MongoDB client) after the fork;
``preload_app`` stays off because pymongo clients are not fork-safe.
"""
import os

wsgi_app = "scim_docstore.wsgi:app"
bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
preload_app = False
accesslog = "-"


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    # Enforce store consistency: demo mode must never point at a production database
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode and os.environ.get("STORE_BACKEND", "memory").lower() == "mongodb":
        worker.log.warning("DEMO_MODE=true with STORE_BACKEND=mongodb (demo defaults apply to MONGO_URI)")

    from pathlib import Path
    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
            return
    worker.log.info("No /run/secrets mount; settings fall back to environment variables")
