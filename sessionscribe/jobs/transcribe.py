"""Background job entrypoints.

These are plain module-level functions so RQ can import them. They run
inside the current app context when there is one (thread pool, sync mode,
``scripts/run_rq_worker.py``) and build an app otherwise.
"""

from flask import has_app_context

from ..services.pipeline import Job, get_pipeline


def _in_app_context(func, *args, **kwargs):
    if has_app_context():
        return func(*args, **kwargs)
    # lazy import to avoid circular imports at module import time
    from sessionscribe import create_app
    app = create_app()
    with app.app_context():
        return func(*args, **kwargs)


def _run_media(payload):
    job = Job.from_dict(payload)
    return get_pipeline().run_media_job(job).to_dict()


def _run_text(payload, text):
    job = Job.from_dict(payload)
    return get_pipeline().run_text_job(job, text).to_dict()


def _run_reprocess(subject_id, force):
    return get_pipeline().trigger_reprocess(subject_id, force=force)


def _run_bulk_sweep(subject_id, force):
    return get_pipeline().run_bulk_sweep(subject_id=subject_id, force=force)


def process_media_job(payload: dict):
    """Normalize, transcribe, analyze and store one uploaded media file."""
    return _in_app_context(_run_media, payload)


def process_text_job(payload: dict, text: str):
    """Analyze and store a ready-made transcript."""
    return _in_app_context(_run_text, payload, text)


def reprocess_subject(subject_id: str, force: bool = False):
    """Re-analyze a subject's records that miss analysis data (or all, if forced)."""
    return _in_app_context(_run_reprocess, subject_id, force)


def bulk_reprocess_sweep(subject_id=None, force: bool = False):
    """Sweep body for a bulk reprocess whose flag the caller already claimed."""
    return _in_app_context(_run_bulk_sweep, subject_id, force)
