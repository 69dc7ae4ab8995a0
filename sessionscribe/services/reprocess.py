"""Re-analysis of stored transcripts, guarded per subject and globally."""

import threading

from flask import current_app

from ..exceptions import ReprocessInProgress, RecordNotFound
from .document import format_transcript_document


class ReprocessRegistry:
    """Subjects currently being reprocessed plus the bulk-sweep flag.

    Every check-and-set happens under one lock, so two triggers for the same
    subject can never both get through.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subjects = set()
        self._bulk_running = False

    def acquire_subject(self, subject_id) -> bool:
        with self._lock:
            if self._bulk_running or subject_id in self._subjects:
                return False
            self._subjects.add(subject_id)
            return True

    def release_subject(self, subject_id):
        with self._lock:
            self._subjects.discard(subject_id)

    def begin_bulk(self) -> bool:
        with self._lock:
            if self._bulk_running:
                return False
            self._bulk_running = True
            return True

    def end_bulk(self):
        with self._lock:
            self._bulk_running = False

    @property
    def bulk_running(self) -> bool:
        with self._lock:
            return self._bulk_running

    def active_subjects(self):
        with self._lock:
            return set(self._subjects)


def should_reprocess(record, force=False) -> bool:
    """Only records missing essential derived data are re-analyzed, unless forced."""
    if force:
        return True
    analysis = (record or {}).get("analysis")
    if not isinstance(analysis, dict):
        return True
    return not analysis.get("summary") or not analysis.get("sentiments")


def reprocess_record(store, name, analyze):
    """Re-analyze one stored transcript and rewrite its document and metadata."""
    found = store.get(name)
    if found is None:
        raise RecordNotFound(name)
    transcript = store.read_transcript(name)
    context = found.get("metadata") or {}
    analysis = analyze(transcript)
    document = format_transcript_document(transcript, context, analysis)
    store.upsert(name, transcript, document, context, analysis)
    return {"file_name": name, "analysis": analysis}


def trigger_reprocess(registry, store, subject_id, force=False, analyze=None):
    """Reprocess a subject's incomplete records.

    Returns the list of reprocessed names, or None when the subject is
    already being handled or a bulk sweep is running (skipped, not queued).
    """
    if not subject_id:
        return None
    if not registry.acquire_subject(subject_id):
        current_app.logger.info("Reprocess for subject %s skipped: already running", subject_id)
        return None
    done = []
    try:
        for record in store.list_by_subject(subject_id):
            if not should_reprocess(record, force):
                continue
            name = record.get("file_name")
            try:
                reprocess_record(store, name, analyze)
                done.append(name)
            except Exception:
                current_app.logger.exception("Reprocessing %s failed", name)
        current_app.logger.info("Reprocessed %d record(s) for subject %s", len(done), subject_id)
        return done
    finally:
        registry.release_subject(subject_id)


def run_bulk_sweep(registry, store, subject_id=None, force=False, analyze=None):
    """Sequential sweep over all records (or one subject's). Caller holds the bulk flag."""
    summary = {"total": 0, "processed": 0, "skipped": 0, "failed": 0}
    try:
        records = store.list_by_subject(subject_id) if subject_id else store.get_all()
        summary["total"] = len(records)
        for record in records:
            if not should_reprocess(record, force):
                summary["skipped"] += 1
                continue
            name = record.get("file_name")
            try:
                reprocess_record(store, name, analyze)
                summary["processed"] += 1
            except Exception:
                summary["failed"] += 1
                current_app.logger.exception("Bulk reprocessing of %s failed", name)
        current_app.logger.info("Bulk reprocess finished: %s", summary)
        return summary
    finally:
        registry.end_bulk()


def bulk_reprocess(registry, store, subject_id=None, force=False, analyze=None):
    if not registry.begin_bulk():
        raise ReprocessInProgress("a bulk reprocessing sweep is already running")
    return run_bulk_sweep(registry, store, subject_id=subject_id, force=force, analyze=analyze)
