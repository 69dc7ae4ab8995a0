import re
import unicodedata

DEFAULT_NAME = "student"
SUFFIX = "_session"
EXTENSION = ".txt"


def safe_base(name):
    """Filesystem-safe version of an arbitrary base name."""
    s = re.sub(r"[^\w\-.]+", "_", name or "")
    s = re.sub(r"_+", "_", s)
    return s or "media"


def _strip_accents(value):
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def build_record_name(context) -> str:
    """Deterministic record name from student name, enrolment id and session date.

    ``Maria José``, ``2023-001``, ``2024-11-27`` -> ``Maria_Jose_2023001_20241127_session.txt``.
    With nothing to go on the result is ``student_session.txt``.
    """
    context = context or {}
    raw_name = str(context.get("student_name") or "")
    raw_id = str(context.get("student_id") or "")
    raw_date = str(context.get("session_date") or "")

    name = re.sub(r"[^a-zA-Z0-9]+", "_", _strip_accents(raw_name)).strip("_") or DEFAULT_NAME
    ext_id = re.sub(r"[^a-zA-Z0-9]+", "", raw_id)
    date = re.sub(r"[^0-9]", "", raw_date)

    base = name
    if ext_id:
        base += f"_{ext_id}"
    if date:
        base += f"_{date}"
    return base + SUFFIX + EXTENSION
