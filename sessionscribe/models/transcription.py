from ..extensions import db
from .base import TimestampMixin


class TranscriptionRecord(db.Model, TimestampMixin):
    """Durable mirror of a finished transcript + analysis."""
    __tablename__ = "transcription_records"

    id = db.Column(db.Integer, primary_key=True)
    # deterministic slug, e.g. Maria_Silva_2023001_20241127_session.txt
    name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    subject_id = db.Column(db.String(128), index=True)
    size = db.Column(db.Integer, nullable=False, default=0)
    # ISO timestamp of the pipeline run that produced this row
    recorded_at = db.Column(db.String(40))
    subject_metadata = db.Column(db.JSON)
    analysis = db.Column(db.JSON)

    def to_dict(self):
        return {
            "file_name": self.name,
            "size": self.size,
            "created_at": self.recorded_at,
            "metadata": self.subject_metadata or {},
            "analysis": self.analysis,
        }

    def __repr__(self):
        return f"<TranscriptionRecord name={self.name} subject_id={self.subject_id}>"
