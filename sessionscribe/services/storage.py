import os
import time
import random
from io import BytesIO

import docx
from werkzeug.utils import secure_filename


def file_extension(filename):
    return filename.rsplit(".", 1)[1].lower() if filename and "." in filename else ""


def allowed_file(filename, allowed):
    return file_extension(filename) in allowed


def save_upload(file_storage, upload_dir, prefix="media"):
    """Store an uploaded file under a unique name; returns the absolute path."""
    os.makedirs(upload_dir, exist_ok=True)
    safe = secure_filename(file_storage.filename or "")
    ext = file_extension(safe)
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    fname = f"{prefix}-{unique}.{ext}" if ext else f"{prefix}-{unique}"
    path = os.path.join(upload_dir, fname)
    file_storage.save(path)
    return os.path.abspath(path)


def _docx_text(data: bytes) -> str:
    doc = docx.Document(BytesIO(data))
    return "\n".join(p.text.strip() for p in doc.paragraphs if p.text.strip())


def read_text_upload(file_storage) -> str:
    """Plain text from a .txt or .docx upload."""
    data = file_storage.read()
    if file_extension(file_storage.filename) == "docx":
        return _docx_text(data)
    return data.decode("utf-8", errors="replace")
