import os
from io import BytesIO

import pytest

from sessionscribe.services.gemini_wrap import FALLBACK_SUMMARY

API = "/api/transcription"


@pytest.fixture
def fake_stages(pipeline, monkeypatch):
    """Replace ffmpeg and the transcription service with in-process stand-ins."""
    calls = {"transcribe": 0}

    def normalize(source, work_dir, base_name):
        path = os.path.join(work_dir, f"{base_name}.wav")
        with open(path, "wb") as f:
            f.write(b"\0" * 64)
        return path

    def transcribe(path, is_final=True):
        calls["transcribe"] += 1
        return {"text": "Orientadora: como você está?", "success": True, "error": None}

    monkeypatch.setattr(pipeline, "normalize", normalize)
    monkeypatch.setattr(pipeline, "transcribe", transcribe)
    monkeypatch.setattr(pipeline, "schedule_reprocess", None)
    return calls


def _upload(client, content=b"fake-mp3", filename="sessao.mp3", **fields):
    data = {"file": (BytesIO(content), filename)}
    data.update(fields)
    return client.post(f"{API}/upload", data=data, content_type="multipart/form-data")


def test_upload_requires_file(client):
    res = client.post(f"{API}/upload", data={}, content_type="multipart/form-data")
    assert res.status_code == 400


def test_upload_rejects_unknown_extension(client):
    res = _upload(client, filename="notes.pdf")
    assert res.status_code == 400
    assert "unsupported" in res.get_json()["error"]


def test_upload_rejects_empty_file(app, client):
    res = _upload(client, content=b"")
    assert res.status_code == 400
    assert os.listdir(app.config["UPLOAD_DIR"]) == []


def test_upload_accepts_and_processes(app, client, fake_stages):
    res = _upload(client, student_name="Maria Silva", student_id="2023001", session_date="2024-11-27", subject_id="s1")
    assert res.status_code == 202
    body = res.get_json()
    assert body["status"] == "accepted"
    assert body["job_id"]
    assert body["file_name"] == "Maria_Silva_2023001_20241127_session.txt"

    # sync dispatch: the job already ran
    assert fake_stages["transcribe"] == 1
    listed = client.get(f"{API}/list").get_json()["data"]
    assert [r["file_name"] for r in listed] == [body["file_name"]]
    assert listed[0]["analysis"]["summary"] == FALLBACK_SUMMARY
    assert os.listdir(app.config["UPLOAD_DIR"]) == []

    by_subject = client.get(f"{API}/by-subject/s1").get_json()["data"]
    assert len(by_subject) == 1
    assert client.get(f"{API}/by-subject/other").get_json()["data"] == []


def test_upload_accepts_legacy_audio_field(client, fake_stages):
    data = {"audio": (BytesIO(b"x"), "a.wav")}
    res = client.post(f"{API}/upload", data=data, content_type="multipart/form-data")
    assert res.status_code == 202


def test_upload_text_json(client):
    res = client.post(f"{API}/upload-text", json={"text": "Aluno: tudo bem.", "student_name": "Ana"})
    assert res.status_code == 202
    assert res.get_json()["file_name"] == "Ana_session.txt"

    got = client.get(f"{API}/Ana_session.txt").get_json()["data"]
    assert got["content"].endswith("Aluno: tudo bem.")
    assert got["analysis"]["is_fallback"] is True


def test_upload_text_file(client):
    data = {"file": (BytesIO("Relato da sessão.".encode("utf-8")), "relato.txt"), "student_name": "Bia"}
    res = client.post(f"{API}/upload-text", data=data, content_type="multipart/form-data")
    assert res.status_code == 202
    assert client.get(f"{API}/Bia_session.txt").status_code == 200


def test_upload_text_requires_text(client):
    assert client.post(f"{API}/upload-text", json={"text": "   "}).status_code == 400
    assert client.post(f"{API}/upload-text", json={}).status_code == 400


def test_analyze_returns_fallback_without_key(client):
    res = client.post(f"{API}/analyze", json={"text": "Conversa curta."})
    assert res.status_code == 200
    body = res.get_json()
    assert body["analysis"]["summary"] == FALLBACK_SUMMARY
    assert body["original_text"] == "Conversa curta."
    assert client.post(f"{API}/analyze", json={}).status_code == 400


def test_get_and_delete_missing(client):
    assert client.get(f"{API}/missing_session.txt").status_code == 404
    assert client.delete(f"{API}/missing_session.txt").status_code == 404
    assert client.post(f"{API}/missing_session.txt/reprocess").status_code == 404


def test_delete_existing(client):
    client.post(f"{API}/upload-text", json={"text": "abc", "student_name": "Ana"})
    res = client.delete(f"{API}/Ana_session.txt")
    assert res.status_code == 200
    assert client.get(f"{API}/Ana_session.txt").status_code == 404


def test_reprocess_single_record(client):
    client.post(f"{API}/upload-text", json={"text": "abc", "student_name": "Ana"})
    res = client.post(f"{API}/Ana_session.txt/reprocess")
    assert res.status_code == 200
    assert res.get_json()["data"]["file_name"] == "Ana_session.txt"


def test_bulk_reprocess_conflict(client, pipeline):
    assert pipeline.registry.begin_bulk()
    try:
        res = client.post(f"{API}/reprocess", json={})
        assert res.status_code == 409
    finally:
        pipeline.registry.end_bulk()


def test_bulk_reprocess_runs_and_releases_flag(client, pipeline):
    res = client.post(f"{API}/reprocess", json={"force": True})
    assert res.status_code == 202
    assert res.get_json()["force"] is True
    assert pipeline.registry.bulk_running is False


def test_subject_reprocess_accepted(client, pipeline):
    res = client.post(f"{API}/reprocess/subject/s1")
    assert res.status_code == 202
    assert pipeline.registry.active_subjects() == set()


def test_health(client):
    body = client.get(f"{API}/health").get_json()
    assert body["status"] == "ok"
    assert body["dispatcher"] == "sync"
