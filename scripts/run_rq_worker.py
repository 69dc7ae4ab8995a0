"""Run an RQ worker inside the Flask app context.

Usage:
  export JOB_QUEUE=rq REDIS_URL=redis://localhost:6379/0
  python scripts/run_rq_worker.py

Media and text jobs enqueued by the API run here; each job pushes an app
context of its own, so the worker only needs the app for config and logging.
Reprocessing is never enqueued. The sweep that follows a finished job runs
on this worker's own thread pool and is guarded by this worker's registry,
which does not see a bulk sweep started in the API process.
"""

import sys
import os

# Ensure project root is on sys.path when running from scripts/ or other cwd
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from sessionscribe import create_app
import redis
from rq import Worker, Queue


def main():
    app = create_app()
    redis_url = app.config.get('REDIS_URL') or os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    conn = redis.from_url(redis_url)
    with app.app_context():
        q = Queue('default', connection=conn)
        worker = Worker([q], connection=conn)
        app.logger.info('RQ worker starting (pid %s)', os.getpid())
        try:
            worker.work(burst=False, with_scheduler=True, logging_level=app.config.get('LOG_LEVEL') or 'INFO')
        finally:
            app.logger.info('RQ worker exiting (pid %s)', os.getpid())


if __name__ == '__main__':
    main()
