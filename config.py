import os
from dotenv import load_dotenv
load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _int_env(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///sessionscribe.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # job dispatch: thread (default), rq or sync
    JOB_QUEUE = os.getenv("JOB_QUEUE", "thread")
    JOB_WORKERS = _int_env("JOB_WORKERS", 2)
    JOB_TIMEOUT_SEC = _int_env("JOB_TIMEOUT_SEC", 3600)
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # uploads
    MAX_UPLOAD_MB = _int_env("MAX_UPLOAD_MB", 500)
    MAX_CONTENT_LENGTH = MAX_UPLOAD_MB * 1024 * 1024
    ALLOWED_MEDIA_EXTENSIONS = {"mp3", "wav", "m4a", "ogg", "mp4", "mov", "webm", "mkv", "avi"}
    ALLOWED_TEXT_EXTENSIONS = {"txt", "docx"}

    # local storage
    UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(BASE_DIR, "instance", "uploads"))
    WORK_DIR = os.getenv("WORK_DIR", os.path.join(BASE_DIR, "instance", "work"))
    TRANSCRIPTIONS_DIR = os.getenv("TRANSCRIPTIONS_DIR", os.path.join(BASE_DIR, "instance", "transcriptions"))

    # ffmpeg
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
    FFMPEG_TIMEOUT_SEC = _int_env("FFMPEG_TIMEOUT_SEC", 300)
    SEGMENT_THRESHOLD_MB = _int_env("SEGMENT_THRESHOLD_MB", 90)
    SEGMENT_SECONDS = _int_env("SEGMENT_SECONDS", 600)

    # Gemini
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_AI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-flash-latest")
    GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com")
    TRANSCRIBE_TIMEOUT_SEC = _int_env("TRANSCRIBE_TIMEOUT_SEC", 600)
    ANALYSIS_TIMEOUT_SEC = _int_env("ANALYSIS_TIMEOUT_SEC", 120)
    ANALYSIS_MAX_ATTEMPTS = _int_env("ANALYSIS_MAX_ATTEMPTS", 4)
    TRANSCRIPT_LANGUAGE = os.getenv("TRANSCRIPT_LANGUAGE", "Brazilian Portuguese")
