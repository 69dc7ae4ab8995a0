"""Best-effort updates to the meeting (tracking) record linked to a job.

None of these calls may change a job's outcome: errors are logged and the
session rolled back.
"""

from datetime import datetime, timezone

from flask import current_app

from ..extensions import db
from ..models.meeting import Meeting

STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

# context key -> Meeting attribute
_LINK_FIELDS = (
    ("subject_id", "subject_id"),
    ("request_id", "request_id"),
    ("student_name", "student_name"),
    ("student_email", "student_email"),
    ("student_id", "student_id"),
    ("course", "course"),
)


class MeetingTracker:

    def _load(self, meeting_id):
        if not meeting_id:
            return None
        return db.session.get(Meeting, str(meeting_id))

    def _update(self, meeting_id, apply):
        if not meeting_id:
            return False
        try:
            meeting = self._load(meeting_id)
            if meeting is None:
                current_app.logger.info("Meeting %s not found; status not updated", meeting_id)
                return False
            apply(meeting)
            meeting.updated_at = datetime.now(timezone.utc)
            db.session.commit()
            return True
        except Exception:
            db.session.rollback()
            current_app.logger.warning("Could not update meeting %s", meeting_id, exc_info=True)
            return False

    def mark_processing(self, meeting_id):
        def apply(m):
            m.status = STATUS_PROCESSING
            m.error = None
        return self._update(meeting_id, apply)

    def mark_completed(self, meeting_id, file_name, context=None):
        context = context or {}

        def apply(m):
            m.status = STATUS_COMPLETED
            m.error = None
            m.transcription_file_name = file_name
            for key, attr in _LINK_FIELDS:
                if context.get(key):
                    setattr(m, attr, context[key])
        return self._update(meeting_id, apply)

    def mark_errored(self, meeting_id, error):
        def apply(m):
            m.status = STATUS_ERROR
            m.error = str(error)[:2000] if error else None
        return self._update(meeting_id, apply)

    def enrich_context(self, context):
        """Fill empty context fields from the linked meeting, in place."""
        meeting_id = context.get("meeting_id")
        if not meeting_id:
            return context
        try:
            meeting = self._load(meeting_id)
        except Exception:
            db.session.rollback()
            current_app.logger.warning("Could not load meeting %s for enrichment", meeting_id, exc_info=True)
            return context
        if meeting is None:
            return context
        for key, attr in _LINK_FIELDS:
            if not context.get(key) and getattr(meeting, attr, None):
                context[key] = getattr(meeting, attr)
        if not context.get("session_date") and meeting.scheduled_date:
            context["session_date"] = meeting.scheduled_date
        return context
