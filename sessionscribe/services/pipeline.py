"""Media/text -> transcript -> analysis -> stored record.

A ``Job`` carries its own state; ``PipelineCoordinator`` moves it through

    received -> normalizing -> (segmenting) -> transcribing
             -> analyzing -> persisting -> completed | failed

Text jobs go straight from received to analyzing. Stage implementations
(ffmpeg, Gemini, storage, meeting updates) are injected so they can be
swapped in tests.
"""

import enum
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from ..exceptions import (
    ChunkTranscriptionError,
    InvalidTransition,
    PersistenceError,
    PipelineError,
    ValidationError,
)
from .document import format_transcript_document
from .gemini_wrap import analyze_transcription, fallback_analysis, transcribe_audio
from .janitor import job_workspace
from .media import normalize_audio, segment_audio
from .naming import build_record_name
from .reprocess import (
    ReprocessRegistry,
    bulk_reprocess,
    reprocess_record,
    run_bulk_sweep,
    trigger_reprocess,
)
from .tracking import MeetingTracker
from .transcript_store import TranscriptStore

CONTEXT_FIELDS = (
    "subject_id",
    "student_name",
    "student_email",
    "student_id",
    "course",
    "request_id",
    "meeting_id",
    "session_date",
)

CHUNK_SEPARATOR = "\n\n"


def build_context(data) -> Dict[str, Any]:
    """Subject association bag from form/JSON input; blanks become None."""
    data = data or {}
    context = {}
    for key in CONTEXT_FIELDS:
        value = data.get(key)
        if isinstance(value, str):
            value = value.strip()
        context[key] = value or None
    return context


class JobState(str, enum.Enum):
    RECEIVED = "received"
    NORMALIZING = "normalizing"
    SEGMENTING = "segmenting"
    TRANSCRIBING = "transcribing"
    ANALYZING = "analyzing"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


TRANSITIONS = {
    JobState.RECEIVED: {JobState.NORMALIZING, JobState.ANALYZING, JobState.FAILED},
    JobState.NORMALIZING: {JobState.SEGMENTING, JobState.TRANSCRIBING, JobState.FAILED},
    JobState.SEGMENTING: {JobState.TRANSCRIBING, JobState.FAILED},
    JobState.TRANSCRIBING: {JobState.ANALYZING, JobState.FAILED},
    JobState.ANALYZING: {JobState.PERSISTING, JobState.FAILED},
    JobState.PERSISTING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


def transition(current: JobState, target: JobState) -> JobState:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value}")
    return target


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Job:
    source_path: Optional[str]
    original_name: str
    context: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=_now_iso)
    state: JobState = JobState.RECEIVED

    def advance(self, target: JobState):
        self.state = transition(self.state, target)
        current_app.logger.info("Job %s -> %s", self.id, self.state.value)

    @property
    def terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def to_dict(self):
        return {
            "id": self.id,
            "source_path": self.source_path,
            "original_name": self.original_name,
            "context": dict(self.context),
            "created_at": self.created_at,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            source_path=data.get("source_path"),
            original_name=data.get("original_name") or "",
            context=dict(data.get("context") or {}),
            id=data.get("id") or uuid.uuid4().hex,
            created_at=data.get("created_at") or _now_iso(),
            state=JobState(data.get("state") or JobState.RECEIVED.value),
        )


@dataclass
class JobResult:
    job_id: str
    state: JobState
    file_name: Optional[str] = None
    transcription: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    parts: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self):
        return {
            "job_id": self.job_id,
            "state": self.state.value,
            "file_name": self.file_name,
            "transcription": self.transcription,
            "analysis": self.analysis,
            "metadata": self.metadata,
            "parts": self.parts,
            "error": self.error,
        }


def merge_transcripts(texts):
    return CHUNK_SEPARATOR.join(texts)


class PipelineCoordinator:
    def __init__(
        self,
        store: TranscriptStore,
        registry: ReprocessRegistry,
        *,
        work_root: str,
        segment_threshold_bytes: int,
        normalize: Callable[[str, str, str], str],
        segment: Callable[[str, str], List[str]],
        transcribe: Callable[[str, bool], Dict[str, Any]],
        analyze: Callable[[str], Dict[str, Any]],
        tracker: MeetingTracker,
        schedule_reprocess: Optional[Callable[[str], Any]] = None,
    ):
        self.store = store
        self.registry = registry
        self.work_root = work_root
        self.segment_threshold_bytes = segment_threshold_bytes
        self.normalize = normalize
        self.segment = segment
        self.transcribe = transcribe
        self.analyze = analyze
        self.tracker = tracker
        self.schedule_reprocess = schedule_reprocess

    # -- entry points -------------------------------------------------------

    def run_media_job(self, job: Job) -> JobResult:
        current_app.logger.info("Job %s received: %s", job.id, job.original_name)
        self.tracker.mark_processing(job.context.get("meeting_id"))
        try:
            with job_workspace(self.work_root, job.id, job.source_path) as ws:
                transcript, parts = self._media_to_transcript(job, ws)
        except Exception as e:
            return self._fail(job, e)
        return self._complete(job, transcript, parts)

    def run_text_job(self, job: Job, text: str) -> JobResult:
        current_app.logger.info("Text job %s received: %s", job.id, job.original_name)
        self.tracker.mark_processing(job.context.get("meeting_id"))
        try:
            # text jobs keep no media, but an uploaded .txt/.docx still has to go
            with job_workspace(self.work_root, job.id, job.source_path):
                text = (text or "").strip()
                if not text:
                    raise ValidationError("transcript text is empty")
        except Exception as e:
            return self._fail(job, e)
        return self._complete(job, text, [])

    # -- reprocessing -------------------------------------------------------

    def analyze_text(self, text):
        try:
            return self.analyze(text)
        except Exception:
            current_app.logger.exception("Analysis raised; using fallback analysis")
            return fallback_analysis()

    def reprocess_record(self, name):
        return reprocess_record(self.store, name, self.analyze_text)

    def trigger_reprocess(self, subject_id, force=False):
        return trigger_reprocess(self.registry, self.store, subject_id, force=force, analyze=self.analyze_text)

    def bulk_reprocess(self, subject_id=None, force=False):
        return bulk_reprocess(self.registry, self.store, subject_id=subject_id, force=force, analyze=self.analyze_text)

    def run_bulk_sweep(self, subject_id=None, force=False):
        return run_bulk_sweep(self.registry, self.store, subject_id=subject_id, force=force, analyze=self.analyze_text)

    # -- stages -------------------------------------------------------------

    def _media_to_transcript(self, job, ws):
        job.advance(JobState.NORMALIZING)
        base_name = os.path.splitext(os.path.basename(job.source_path or job.id))[0]
        wav_path = self.normalize(job.source_path, ws.root, base_name)
        size = os.path.getsize(wav_path)

        if size <= self.segment_threshold_bytes:
            current_app.logger.info("Job %s: %.2f MB, transcribing as one unit", job.id, size / (1024 * 1024))
            job.advance(JobState.TRANSCRIBING)
            result = self.transcribe(wav_path, True)
            return self._require_text(result), []

        current_app.logger.info("Job %s: %.2f MB, segmenting before transcription", job.id, size / (1024 * 1024))
        job.advance(JobState.SEGMENTING)
        chunks = self.segment(wav_path, ws.segments_dir)
        job.advance(JobState.TRANSCRIBING)
        texts = []
        for index, chunk in enumerate(chunks):
            current_app.logger.info("Job %s: transcribing part %d/%d", job.id, index + 1, len(chunks))
            result = self.transcribe(chunk, False)
            texts.append(self._require_text(result, index))
        parts = [{"index": i + 1, "chars": len(t)} for i, t in enumerate(texts)]
        return merge_transcripts(texts), parts

    @staticmethod
    def _require_text(result, index=None):
        text = (result or {}).get("text") or ""
        if not (result or {}).get("success") or not text.strip():
            err = (result or {}).get("error") or "empty transcript"
            where = "audio" if index is None else f"part {index + 1}"
            raise ChunkTranscriptionError(f"transcription of {where} failed: {err}", index)
        return text.strip()

    def _complete(self, job, transcript, parts):
        try:
            job.advance(JobState.ANALYZING)
            analysis = self.analyze_text(transcript)

            job.advance(JobState.PERSISTING)
            name = build_record_name(job.context)
            document = format_transcript_document(transcript, job.context, analysis)
            try:
                self.store.upsert(name, transcript, document, job.context, analysis)
            except PersistenceError:
                current_app.logger.exception("Job %s: could not persist %s", job.id, name)

            job.advance(JobState.COMPLETED)
        except Exception as e:
            return self._fail(job, e)

        self.tracker.mark_completed(job.context.get("meeting_id"), name, job.context)
        self._schedule_sweep(job.context.get("subject_id"))
        current_app.logger.info("Job %s completed as %s", job.id, name)
        return JobResult(
            job_id=job.id,
            state=job.state,
            file_name=name,
            transcription=transcript,
            analysis=analysis,
            metadata=dict(job.context),
            parts=parts,
        )

    def _schedule_sweep(self, subject_id):
        if not subject_id or self.schedule_reprocess is None:
            return
        try:
            self.schedule_reprocess(subject_id)
        except Exception:
            current_app.logger.warning("Could not schedule reprocess for subject %s", subject_id, exc_info=True)

    def _fail(self, job, error):
        if isinstance(error, PipelineError):
            current_app.logger.error("Job %s failed in %s: %s", job.id, job.state.value, error)
        else:
            current_app.logger.error("Job %s crashed in %s", job.id, job.state.value, exc_info=error)
        if not job.terminal:
            job.state = transition(job.state, JobState.FAILED)
        self.tracker.mark_errored(job.context.get("meeting_id"), error)
        return JobResult(job_id=job.id, state=job.state, metadata=dict(job.context), error=str(error))


def build_pipeline(app):
    """Wire the real stages from app config."""
    from ..extensions import dispatcher
    from ..jobs.transcribe import reprocess_subject

    cfg = app.config
    return PipelineCoordinator(
        TranscriptStore(cfg["TRANSCRIPTIONS_DIR"]),
        ReprocessRegistry(),
        work_root=cfg["WORK_DIR"],
        segment_threshold_bytes=int(cfg["SEGMENT_THRESHOLD_MB"]) * 1024 * 1024,
        normalize=partial(normalize_audio, ffmpeg_path=cfg["FFMPEG_PATH"], timeout=cfg["FFMPEG_TIMEOUT_SEC"]),
        segment=partial(
            segment_audio,
            segment_seconds=cfg["SEGMENT_SECONDS"],
            ffmpeg_path=cfg["FFMPEG_PATH"],
            timeout=cfg["FFMPEG_TIMEOUT_SEC"],
        ),
        transcribe=transcribe_audio,
        analyze=analyze_transcription,
        tracker=MeetingTracker(),
        # the registry is process-local, so sweeps never go onto the RQ queue
        schedule_reprocess=lambda subject_id: dispatcher.submit_local(reprocess_subject, subject_id, False),
    )


def get_pipeline() -> PipelineCoordinator:
    return current_app.extensions["pipeline"]
