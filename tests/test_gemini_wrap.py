import json

import pytest
import requests

from sessionscribe.exceptions import AnalysisError
from sessionscribe.services import gemini_wrap
from sessionscribe.services.gemini_wrap import (
    FALLBACK_SUMMARY,
    analyze_transcription,
    coerce_analysis,
    extract_text,
    transcribe_audio,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.headers = headers or {}
        self.text = text or json.dumps(self._payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code}", response=self)


def _candidate(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


GOOD_ANALYSIS = {
    "sentiments": {"positive": 0.7, "neutral": 0.2, "negative": 0.1},
    "keywords": [f"k{i}" for i in range(15)],
    "topics": ["study", "routine"],
    "summary": "The student reports progress.",
    "actionableInsights": ["Follow up next week.", "Share study plan.", "Check in with family."],
}


def test_extract_text_shapes():
    assert extract_text({"text": "a"}) == "a"
    assert extract_text({"output_text": "b"}) == "b"
    assert extract_text(_candidate("c")) == "c"
    assert extract_text({"response": _candidate("d")}) == "d"
    assert extract_text({"candidates": [{"content": {"parts": [{"text": "e"}, {"text": "f"}]}}]}) == "ef"
    assert extract_text({"unexpected": 1}) == ""
    assert extract_text(None) == ""


def test_coerce_analysis_caps_lists():
    out = coerce_analysis(GOOD_ANALYSIS)
    assert len(out["keywords"]) == 10
    assert out["actionable_insights"][0] == "Follow up next week."
    assert out["is_fallback"] is False


def test_coerce_analysis_requires_summary():
    with pytest.raises(AnalysisError):
        coerce_analysis({"sentiments": {}, "summary": ""})


def test_coerce_analysis_scales_percentages():
    out = coerce_analysis(dict(GOOD_ANALYSIS, sentiments={"positive": 60, "neutral": 30, "negative": 10}))
    assert out["sentiments"] == {"positive": 0.6, "neutral": 0.3, "negative": 0.1}


def test_coerce_analysis_rejects_all_zero_sentiments():
    with pytest.raises(AnalysisError):
        coerce_analysis(dict(GOOD_ANALYSIS, sentiments={"positive": 0, "neutral": 0, "negative": 0}))


def test_coerce_analysis_insight_bounds():
    with pytest.raises(AnalysisError):
        coerce_analysis(dict(GOOD_ANALYSIS, actionableInsights=["Only one."]))
    many = [f"step {i}" for i in range(8)]
    assert len(coerce_analysis(dict(GOOD_ANALYSIS, actionableInsights=many))["actionable_insights"]) == 5


def test_analysis_fallback_without_key(app):
    app.config["GEMINI_API_KEY"] = ""
    out = analyze_transcription("some text")
    assert out["is_fallback"] is True
    assert out["summary"] == FALLBACK_SUMMARY


def test_analysis_parses_fenced_json(app, monkeypatch):
    app.config["GEMINI_API_KEY"] = "k"
    body = "```json\n" + json.dumps(GOOD_ANALYSIS) + "\n```"
    monkeypatch.setattr(gemini_wrap.requests, "post", lambda *a, **kw: FakeResponse(payload=_candidate(body)))
    out = analyze_transcription("texto")
    assert out["summary"] == "The student reports progress."
    assert out["sentiments"]["positive"] == 0.7


def test_analysis_retries_on_server_error(app, monkeypatch):
    app.config["GEMINI_API_KEY"] = "k"
    app.config["ANALYSIS_MAX_ATTEMPTS"] = 3
    responses = [FakeResponse(status_code=503), FakeResponse(payload=_candidate(json.dumps(GOOD_ANALYSIS)))]
    monkeypatch.setattr(gemini_wrap.requests, "post", lambda *a, **kw: responses.pop(0))
    monkeypatch.setattr(gemini_wrap.time, "sleep", lambda s: None)
    out = analyze_transcription("texto")
    assert out["is_fallback"] is False
    assert responses == []


def test_analysis_does_not_retry_exhausted_quota(app, monkeypatch):
    app.config["GEMINI_API_KEY"] = "k"
    app.config["ANALYSIS_MAX_ATTEMPTS"] = 3
    calls = []

    def fake_post(*a, **kw):
        calls.append(1)
        return FakeResponse(status_code=429, text="Quota exceeded for project")

    monkeypatch.setattr(gemini_wrap.requests, "post", fake_post)
    monkeypatch.setattr(gemini_wrap.time, "sleep", lambda s: None)
    out = analyze_transcription("texto")
    assert out["is_fallback"] is True
    assert len(calls) == 1


def test_analysis_bad_json_falls_back(app, monkeypatch):
    app.config["GEMINI_API_KEY"] = "k"
    monkeypatch.setattr(gemini_wrap.requests, "post", lambda *a, **kw: FakeResponse(payload=_candidate("not json")))
    assert analyze_transcription("texto")["is_fallback"] is True


def test_transcribe_without_key_returns_placeholder(app, tmp_path):
    app.config["GEMINI_API_KEY"] = ""
    wav = tmp_path / "a.wav"
    wav.write_bytes(b"RIFF")
    out = transcribe_audio(str(wav))
    assert out["success"] is False
    assert out["text"].startswith("[TRANSCRIPTION ERROR:")
    assert "a.wav" in out["text"]


def test_transcribe_uploads_generates_and_deletes(app, monkeypatch, tmp_path):
    app.config["GEMINI_API_KEY"] = "k"
    wav = tmp_path / "part-000.wav"
    wav.write_bytes(b"RIFF" + b"\0" * 32)
    posted, deleted = [], []

    def fake_post(url, **kw):
        posted.append(url)
        if url.endswith("/upload/v1beta/files"):
            return FakeResponse(headers={"X-Goog-Upload-URL": "https://upload.example/session"})
        if url == "https://upload.example/session":
            return FakeResponse(payload={"file": {"name": "files/abc", "uri": "gs://abc", "state": "ACTIVE"}})
        return FakeResponse(payload=_candidate("  Orientadora: bom dia.  "))

    def fake_delete(url, **kw):
        deleted.append(url)
        return FakeResponse()

    monkeypatch.setattr(gemini_wrap.requests, "post", fake_post)
    monkeypatch.setattr(gemini_wrap.requests, "delete", fake_delete)

    out = transcribe_audio(str(wav), is_final=False)
    assert out == {"text": "Orientadora: bom dia.", "success": True, "error": None}
    assert any(":generateContent" in u for u in posted)
    assert deleted and deleted[0].endswith("/v1beta/files/abc")


def test_transcribe_http_error_is_reported(app, monkeypatch, tmp_path):
    app.config["GEMINI_API_KEY"] = "k"
    wav = tmp_path / "a.wav"
    wav.write_bytes(b"RIFF")
    monkeypatch.setattr(gemini_wrap.requests, "post", lambda *a, **kw: FakeResponse(status_code=500))
    out = transcribe_audio(str(wav))
    assert out["success"] is False
    assert out["error"]
