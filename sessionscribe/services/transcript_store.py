"""Transcript + analysis persistence.

Every write goes to two places:
  - the SQL table ``transcription_records`` (best-effort mirror; failures are
    rolled back and logged)
  - a local fallback made of ``metadata.json`` (name -> record) plus the
    formatted transcript document stored under the same name

The local map is read-modify-written under a process lock and replaced
atomically, so two jobs finishing together cannot drop each other's entry.
"""

import json
import os
import threading
from datetime import datetime, timezone

from flask import current_app
from werkzeug.utils import safe_join

from ..exceptions import PersistenceError, RecordNotFound
from ..extensions import db
from ..models.transcription import TranscriptionRecord
from .document import extract_raw_transcript

METADATA_FILE = "metadata.json"


def _atomic_write(path, text):
    tmp = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"
    with open(tmp, "w", encoding="utf-8") as fh:
        fh.write(text)
    os.replace(tmp, path)


class TranscriptStore:
    def __init__(self, transcriptions_dir):
        self.transcriptions_dir = os.path.abspath(transcriptions_dir)
        os.makedirs(self.transcriptions_dir, exist_ok=True)
        self.metadata_file = os.path.join(self.transcriptions_dir, METADATA_FILE)
        self._lock = threading.Lock()

    # -- local fallback -----------------------------------------------------

    def _path(self, name):
        if not name or name == METADATA_FILE:
            return None
        return safe_join(self.transcriptions_dir, name)

    def load_metadata(self):
        try:
            with open(self.metadata_file, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            return {}

    def _update_metadata(self, mutate):
        with self._lock:
            data = self.load_metadata()
            mutate(data)
            _atomic_write(self.metadata_file, json.dumps(data, ensure_ascii=False, indent=2))

    # -- durable mirror -----------------------------------------------------

    def _mirror_upsert(self, record):
        try:
            row = TranscriptionRecord.query.filter_by(name=record["file_name"]).one_or_none()
            if row is None:
                row = TranscriptionRecord(name=record["file_name"])
                db.session.add(row)
            metadata = record.get("metadata") or {}
            row.subject_id = metadata.get("subject_id")
            row.size = record["size"]
            row.recorded_at = record["created_at"]
            row.subject_metadata = metadata
            row.analysis = record.get("analysis")
            db.session.commit()
            return True
        except Exception:
            db.session.rollback()
            current_app.logger.warning(
                "Could not mirror %s to the database; local copy only", record["file_name"], exc_info=True
            )
            return False

    def _mirror_delete(self, name):
        try:
            TranscriptionRecord.query.filter_by(name=name).delete()
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.warning("Could not delete %s from the database", name, exc_info=True)

    def _mirror_get(self, name):
        try:
            row = TranscriptionRecord.query.filter_by(name=name).one_or_none()
            return row.to_dict() if row else None
        except Exception:
            db.session.rollback()
            current_app.logger.warning("Database lookup of %s failed", name, exc_info=True)
            return None

    # -- public API ---------------------------------------------------------

    def upsert(self, name, transcript, document, context=None, analysis=None):
        """Write (or overwrite) one record. Raises PersistenceError if the local copy fails."""
        path = self._path(name)
        if path is None:
            raise PersistenceError(f"invalid record name: {name!r}")
        record = {
            "file_name": name,
            "size": len(transcript or ""),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "metadata": dict(context or {}),
            "analysis": analysis,
        }
        self._mirror_upsert(record)
        try:
            _atomic_write(path, document)
            self._update_metadata(lambda data: data.__setitem__(name, record))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"could not write {name}: {e}") from e
        current_app.logger.info("Stored transcript %s (%d chars)", name, record["size"])
        return record

    def get_all(self):
        try:
            rows = TranscriptionRecord.query.order_by(TranscriptionRecord.recorded_at).all()
            if rows:
                return [r.to_dict() for r in rows]
        except Exception:
            db.session.rollback()
            current_app.logger.warning("Database listing failed, using local metadata", exc_info=True)
        try:
            records = list(self.load_metadata().values())
        except ValueError:
            current_app.logger.exception("Local metadata file is unreadable")
            return []
        return sorted(records, key=lambda r: r.get("created_at") or "")

    def list_by_subject(self, subject_id):
        subject_id = str(subject_id)
        return [
            r for r in self.get_all()
            if str((r.get("metadata") or {}).get("subject_id") or "") == subject_id
        ]

    def get(self, name):
        path = self._path(name)
        if path is None or not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            content = fh.read()
        try:
            entry = self.load_metadata().get(name)
        except ValueError:
            entry = None
        if entry is None:
            entry = self._mirror_get(name) or {}
        return {
            "file_name": name,
            "content": content,
            "metadata": entry.get("metadata") or {},
            "analysis": entry.get("analysis") or {},
        }

    def read_transcript(self, name):
        found = self.get(name)
        if found is None:
            raise RecordNotFound(name)
        return extract_raw_transcript(found["content"])

    def delete(self, name):
        path = self._path(name)
        if path is None:
            return False
        existed = os.path.isfile(path)
        if existed:
            os.remove(path)

        def _drop(data):
            data.pop(name, None)

        self._update_metadata(_drop)
        self._mirror_delete(name)
        return existed
