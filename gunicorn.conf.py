"""Gunicorn configuration for the provisioning adapter.

The dispatcher runs as a background thread inside the worker process, and
exactly one dispatcher may drain a queue at a time. Hence a single worker;
request concurrency comes from threads.

Start with:
    gunicorn -c gunicorn.conf.py "app.flask_app:create_app()"
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = 1
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.environ.get("GUNICORN_GRACEFUL_TIMEOUT", "30"))


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    if int(os.environ.get("GUNICORN_WORKERS", "1")) != 1:
        worker.log.warning("GUNICORN_WORKERS is ignored: the provisioning dispatcher requires a single worker")

    from pathlib import Path
    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets (loaded by settings.py)")


def worker_exit(server, worker):
    """Stop the dispatcher so the running cycle persists its results before exit."""
    app = getattr(getattr(worker, "wsgi", None), "config", None)
    dispatcher = app.get("DISPATCHER") if app is not None else None
    if dispatcher is None:
        return
    worker.log.info("Stopping provisioning dispatcher")
    dispatcher.stop(timeout=graceful_timeout)
