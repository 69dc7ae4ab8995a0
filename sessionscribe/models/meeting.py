from ..extensions import db
from .base import TimestampMixin


class Meeting(db.Model, TimestampMixin):
    """Scheduled care session; the pipeline only reads and updates it."""
    __tablename__ = "meetings"

    id = db.Column(db.String(64), primary_key=True)
    # agendada/processing/completed/error/cancelada
    status = db.Column(db.String(32))
    subject_id = db.Column(db.String(128), index=True)
    request_id = db.Column(db.String(128))
    student_name = db.Column(db.String(255))
    student_email = db.Column(db.String(255))
    student_id = db.Column(db.String(64))
    course = db.Column(db.String(255))
    scheduled_date = db.Column(db.String(10))  # YYYY-MM-DD
    transcription_file_name = db.Column(db.String(255))
    error = db.Column(db.Text)

    def __repr__(self) -> str:
        return f"<Meeting id={self.id} status={self.status}>"
