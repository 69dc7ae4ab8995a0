import json
import threading

import pytest

from sessionscribe.exceptions import PersistenceError, RecordNotFound
from sessionscribe.extensions import db
from sessionscribe.models.transcription import TranscriptionRecord
from sessionscribe.services.document import extract_raw_transcript, format_transcript_document
from sessionscribe.services.transcript_store import TranscriptStore

ANALYSIS = {
    "sentiments": {"positive": 0.6, "neutral": 0.3, "negative": 0.1},
    "keywords": ["matemática"],
    "topics": ["estudos"],
    "summary": "Resumo.",
    "actionable_insights": ["Revisar conteúdo."],
    "is_fallback": False,
}


def _put(store, name, transcript="olá mundo", subject_id="s1"):
    ctx = {"subject_id": subject_id, "student_name": "Ana"}
    doc = format_transcript_document(transcript, ctx, ANALYSIS)
    return store.upsert(name, transcript, doc, ctx, ANALYSIS)


def test_upsert_writes_document_metadata_and_mirror(app, store):
    rec = _put(store, "Ana_session.txt", transcript="abc def")
    assert rec["size"] == len("abc def")

    with open(store.metadata_file, encoding="utf-8") as fh:
        data = json.load(fh)
    assert data["Ana_session.txt"]["metadata"]["subject_id"] == "s1"

    row = TranscriptionRecord.query.filter_by(name="Ana_session.txt").one()
    assert row.subject_id == "s1"
    assert row.analysis["summary"] == "Resumo."

    assert store.read_transcript("Ana_session.txt") == "abc def"


def test_upsert_overwrites_same_name(app, store):
    _put(store, "Ana_session.txt", transcript="first")
    _put(store, "Ana_session.txt", transcript="second take")
    assert TranscriptionRecord.query.filter_by(name="Ana_session.txt").count() == 1
    assert store.read_transcript("Ana_session.txt") == "second take"
    assert len(store.get_all()) == 1


def test_list_by_subject(app, store):
    _put(store, "a_session.txt", subject_id="s1")
    _put(store, "b_session.txt", subject_id="s2")
    _put(store, "c_session.txt", subject_id="s1")
    names = sorted(r["file_name"] for r in store.list_by_subject("s1"))
    assert names == ["a_session.txt", "c_session.txt"]


def test_get_all_falls_back_to_local_metadata(app, store):
    _put(store, "a_session.txt")
    TranscriptionRecord.query.delete()
    db.session.commit()
    records = store.get_all()
    assert [r["file_name"] for r in records] == ["a_session.txt"]


def test_delete(app, store):
    _put(store, "a_session.txt")
    assert store.delete("a_session.txt") is True
    assert store.get("a_session.txt") is None
    assert "a_session.txt" not in store.load_metadata()
    assert TranscriptionRecord.query.count() == 0
    assert store.delete("a_session.txt") is False


def test_missing_record(app, store):
    assert store.get("nope.txt") is None
    with pytest.raises(RecordNotFound):
        store.read_transcript("nope.txt")


def test_names_cannot_escape_the_store(app, store):
    assert store.get("../secrets.txt") is None
    assert store.get("metadata.json") is None
    with pytest.raises(PersistenceError):
        store.upsert("../evil.txt", "x", "x")


def test_concurrent_upserts_keep_every_entry(app, tmp_path):
    store = TranscriptStore(str(tmp_path / "concurrent"))
    names = [f"s{i}_session.txt" for i in range(8)]
    ctx = app.app_context

    def worker(name):
        with ctx():
            store.upsert(name, "t", "t", {"subject_id": "s"}, ANALYSIS)

    threads = [threading.Thread(target=worker, args=(n,)) for n in names]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(store.load_metadata()) == sorted(names)


def test_document_round_trip_keeps_header_out_of_transcript():
    doc = format_transcript_document("linha 1\nlinha 2", {"student_name": "Ana", "course": "Física"}, ANALYSIS)
    assert "Student: Ana" in doc
    assert "Summary: Resumo." in doc
    assert extract_raw_transcript(doc) == "linha 1\nlinha 2"
    assert extract_raw_transcript("plain text") == "plain text"


def test_database_failure_keeps_local_record(app, store, monkeypatch):
    def broken_commit():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db.session(), "commit", broken_commit)
    rec = _put(store, "Ana_session.txt", transcript="ainda salvo")
    monkeypatch.undo()

    assert rec["file_name"] == "Ana_session.txt"
    assert TranscriptionRecord.query.count() == 0
    found = store.get("Ana_session.txt")
    assert found["metadata"]["subject_id"] == "s1"
    assert found["analysis"]["summary"] == "Resumo."
    assert store.read_transcript("Ana_session.txt") == "ainda salvo"
    assert [r["file_name"] for r in store.get_all()] == ["Ana_session.txt"]
