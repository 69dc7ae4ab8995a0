from concurrent.futures import ThreadPoolExecutor

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from redis import Redis
from rq import Queue
from flask import current_app


class JobDispatcher:
    """Fire-and-forget execution of pipeline jobs.

    Modes (``JOB_QUEUE``):
      - ``thread``: bounded thread pool inside this process (default)
      - ``rq``: Redis/RQ queue, falling back to local execution when the
        enqueue fails
      - ``sync``: run inline, used by tests and scripts

    Local jobs run inside the app context captured at submit time so they
    can use ``current_app`` and the Flask-SQLAlchemy session.
    """

    def __init__(self):
        self.mode = "sync"
        self.redis = None
        self.queue = None
        self.executor = None
        self.job_timeout = None

    def init_app(self, app):
        self.mode = (app.config.get("JOB_QUEUE") or "thread").lower()
        self.job_timeout = app.config.get("JOB_TIMEOUT_SEC")
        self.redis = None
        self.queue = None
        if self.executor is not None:
            self.executor.shutdown(wait=False)
            self.executor = None

        if self.mode == "rq":
            try:
                self.redis = Redis.from_url(app.config.get("REDIS_URL"))
                self.queue = Queue("default", connection=self.redis)
            except Exception:
                # no usable Redis: keep jobs in this process
                app.logger.exception("Redis/RQ init failed, falling back to thread execution")
                self.redis = None
                self.queue = None
                self.mode = "thread"

        if self.mode in ("thread", "rq"):
            self.executor = ThreadPoolExecutor(
                max_workers=int(app.config.get("JOB_WORKERS") or 2),
                thread_name_prefix="sessionscribe-job",
            )
        app.extensions["dispatcher"] = self

    def enqueue(self, func, *args, **kwargs):
        """Queue ``func`` on RQ when configured, otherwise run it locally."""
        if self.queue is not None:
            try:
                return self.queue.enqueue(func, *args, job_timeout=self.job_timeout, **kwargs)
            except Exception:
                current_app.logger.exception("RQ enqueue failed, falling back to local execution")
        return self.submit_local(func, *args, **kwargs)

    def submit_local(self, func, *args, **kwargs):
        """Run ``func`` in this process, on the pool when one exists."""
        app = current_app._get_current_object()
        if self.executor is None:
            return self._call(app, func, args, kwargs)
        return self.executor.submit(self._call, app, func, args, kwargs)

    @staticmethod
    def _call(app, func, args, kwargs):
        with app.app_context():
            try:
                return func(*args, **kwargs)
            except Exception:
                app.logger.exception("Background job %s failed", getattr(func, "__name__", func))
                return None


db = SQLAlchemy()
migrate = Migrate()
dispatcher = JobDispatcher()
