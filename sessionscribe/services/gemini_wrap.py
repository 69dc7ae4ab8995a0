"""Thin wrappers around the Gemini REST API for transcription and analysis.

We call the HTTP API directly with `requests` instead of an SDK so the
response handling stays in one place: every caller gets plain text from
``extract_text`` and either a ChunkTranscript dict or an Analysis dict back,
never a raw API payload.
"""

import copy
import json
import mimetypes
import os
import random
import re
import time
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

from ..exceptions import AnalysisError

FALLBACK_SUMMARY = "Placeholder summary: automatic analysis of this session failed."

FALLBACK_ANALYSIS = {
    "sentiments": {"positive": 0.5, "neutral": 0.3, "negative": 0.2},
    "keywords": ["error", "analysis_failed", "fallback"],
    "topics": ["api_error", "fallback"],
    "summary": FALLBACK_SUMMARY,
    "actionable_insights": [
        "Check the language service logs.",
        "Try reprocessing this transcript later.",
        "Review the content of this session manually.",
    ],
    "is_fallback": True,
}

MAX_KEYWORDS = 10
MAX_TOPICS = 5
MIN_INSIGHTS = 3
MAX_INSIGHTS = 5


def fallback_analysis() -> Dict[str, Any]:
    return copy.deepcopy(FALLBACK_ANALYSIS)


def _api_key():
    return current_app.config.get("GEMINI_API_KEY")


def _api_base():
    return (current_app.config.get("GEMINI_API_BASE") or "https://generativelanguage.googleapis.com").rstrip("/")


def _model():
    return current_app.config.get("GEMINI_MODEL") or "gemini-flash-latest"


def extract_text(response: Any) -> str:
    """Pull generated text out of whatever shape the API handed back.

    Known locations, tried in order: ``text``, ``output_text``,
    ``candidates[*].content.parts[*].text`` and a nested ``response``.
    Anything else yields an empty string.
    """
    if response is None:
        return ""
    if isinstance(response, str):
        return response
    if not isinstance(response, dict):
        text = getattr(response, "text", None)
        if callable(text):
            text = text()
        return text if isinstance(text, str) else ""

    for key in ("text", "output_text"):
        value = response.get(key)
        if isinstance(value, str) and value:
            return value

    parts = []
    for cand in response.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content") or {}
        for p in content.get("parts") or []:
            if isinstance(p, dict) and isinstance(p.get("text"), str):
                parts.append(p["text"])
            elif isinstance(p, str):
                parts.append(p)
    if parts:
        return "".join(parts)

    nested = response.get("response")
    if nested is not None and nested is not response:
        return extract_text(nested)
    return ""


def upload_file(path: str, mime_type: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
    """Upload a local file with the resumable protocol; returns the file resource."""
    mime_type = mime_type or mimetypes.guess_type(path)[0] or "audio/wav"
    size = os.path.getsize(path)
    start = requests.post(
        f"{_api_base()}/upload/v1beta/files",
        headers={
            "x-goog-api-key": _api_key(),
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(size),
            "X-Goog-Upload-Header-Content-Type": mime_type,
            "Content-Type": "application/json",
        },
        json={"file": {"display_name": os.path.basename(path)}},
        timeout=timeout,
    )
    start.raise_for_status()
    upload_url = start.headers.get("X-Goog-Upload-URL")
    if not upload_url:
        raise RuntimeError("upload session did not return an upload URL")

    with open(path, "rb") as fh:
        r = requests.post(
            upload_url,
            headers={
                "Content-Length": str(size),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
            data=fh,
            timeout=timeout,
        )
    r.raise_for_status()
    info = r.json().get("file") or {}
    return _wait_active(info, timeout=timeout)


def _wait_active(info: Dict[str, Any], timeout: Optional[float] = None, attempts: int = 30) -> Dict[str, Any]:
    # audio is usually ACTIVE right away; larger files sit in PROCESSING briefly
    name = info.get("name")
    for _ in range(attempts):
        if not name or info.get("state") in (None, "ACTIVE"):
            return info
        if info.get("state") == "FAILED":
            raise RuntimeError(f"uploaded file {name} failed processing")
        time.sleep(2)
        r = requests.get(f"{_api_base()}/v1beta/{name}", headers={"x-goog-api-key": _api_key()}, timeout=timeout)
        r.raise_for_status()
        info = r.json()
    return info


def delete_file(name: str) -> None:
    r = requests.delete(f"{_api_base()}/v1beta/{name}", headers={"x-goog-api-key": _api_key()}, timeout=30)
    r.raise_for_status()


def generate_content(parts: List[Dict[str, Any]], json_output: bool = False, timeout: Optional[float] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
    if json_output:
        body["generationConfig"] = {"responseMimeType": "application/json"}
    r = requests.post(
        f"{_api_base()}/v1beta/models/{_model()}:generateContent",
        headers={"x-goog-api-key": _api_key(), "Content-Type": "application/json"},
        json=body,
        timeout=timeout,
    )
    r.raise_for_status()
    return r.json()


def _placeholder(audio_path: str, error: str) -> str:
    return f"[TRANSCRIPTION ERROR: {error}] Simulated transcript for {os.path.basename(audio_path)}."


def transcribe_audio(audio_path: str, is_final: bool = True) -> Dict[str, Any]:
    """Transcribe one audio unit (a whole file or one chunk of it).

    Returns ``{"text", "success", "error"}``. Failures do not raise: the text
    becomes a placeholder that embeds the error and ``success`` is False.
    Nothing is analyzed or stored here, whatever ``is_final`` says.
    """
    label = "file" if is_final else "chunk"
    if not _api_key():
        current_app.logger.warning("GEMINI_API_KEY not configured; cannot transcribe %s %s", label, audio_path)
        err = "GEMINI_API_KEY not configured"
        return {"text": _placeholder(audio_path, err), "success": False, "error": err}

    timeout = current_app.config.get("TRANSCRIBE_TIMEOUT_SEC")
    language = current_app.config.get("TRANSCRIPT_LANGUAGE") or "Brazilian Portuguese"
    uploaded = None
    try:
        uploaded = upload_file(audio_path, "audio/wav", timeout=timeout)
        prompt = (
            f"Transcribe the attached audio in {language}. "
            "Separate different speakers when possible. "
            "Return only the transcript text, without introductions or comments."
        )
        resp = generate_content(
            [
                {"text": prompt},
                {"file_data": {"mime_type": uploaded.get("mimeType") or "audio/wav", "file_uri": uploaded.get("uri")}},
            ],
            timeout=timeout,
        )
        text = extract_text(resp).strip()
        if not text:
            raise RuntimeError("empty transcript returned by the model")
        current_app.logger.info("Transcribed %s %s (%d chars)", label, os.path.basename(audio_path), len(text))
        return {"text": text, "success": True, "error": None}
    except Exception as e:
        current_app.logger.exception("Gemini transcription of %s %s failed", label, audio_path)
        return {"text": _placeholder(audio_path, str(e)), "success": False, "error": str(e)}
    finally:
        if uploaded and uploaded.get("name"):
            try:
                delete_file(uploaded["name"])
            except Exception:
                current_app.logger.warning("Could not delete uploaded file %s", uploaded.get("name"))


ANALYSIS_PROMPT = """Analyze the transcript of a counselling session and return ONLY a JSON object with:
1. "sentiments": object {{"positive": 0.0, "neutral": 0.0, "negative": 0.0}} (values between 0 and 1)
2. "keywords": up to 10 keywords or key phrases (no isolated articles/prepositions)
3. "topics": up to 5 main topics
4. "summary": a concise summary (at most 3 sentences)
5. "actionableInsights": 3 to 5 suggested actions or clinical observations

Write the values in {language}.

Text to analyze:
"{text}"

Return only the JSON, without markdown."""


def _str_list(value, limit):
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()][:limit]


def _sentiments(raw):
    """Non-negative shares that sum to 1; percentages are scaled down the same way."""
    values = {}
    for k in ("positive", "neutral", "negative"):
        try:
            values[k] = max(0.0, float(raw.get(k) or 0.0))
        except (TypeError, ValueError):
            values[k] = 0.0
    total = sum(values.values())
    if total <= 0:
        raise AnalysisError("sentiments are all zero")
    return {k: round(v / total, 4) for k, v in values.items()}


def coerce_analysis(data: Dict[str, Any]) -> Dict[str, Any]:
    """Force model output into the Analysis shape; raises AnalysisError if unusable."""
    if not isinstance(data, dict):
        raise AnalysisError("analysis is not a JSON object")
    raw = data.get("sentiments") or {}
    if not isinstance(raw, dict):
        raise AnalysisError("sentiments is not an object")
    summary = data.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise AnalysisError("analysis has no summary")
    insights = _str_list(data.get("actionableInsights", data.get("actionable_insights")), MAX_INSIGHTS)
    if len(insights) < MIN_INSIGHTS:
        raise AnalysisError(f"expected at least {MIN_INSIGHTS} actionable insights, got {len(insights)}")
    return {
        "sentiments": _sentiments(raw),
        "keywords": _str_list(data.get("keywords"), MAX_KEYWORDS),
        "topics": _str_list(data.get("topics"), MAX_TOPICS),
        "summary": summary.strip(),
        "actionable_insights": insights,
        "is_fallback": False,
    }


def _parse_json_block(text: str) -> Dict[str, Any]:
    try:
        return json.loads(text)
    except ValueError:
        m = re.search(r"\{[\s\S]*\}", text or "")
        if not m:
            raise
        return json.loads(m.group(0))


def _post_with_retry(parts, timeout):
    """generate_content with exponential backoff on 429/5xx and network errors."""
    max_attempts = int(current_app.config.get("ANALYSIS_MAX_ATTEMPTS") or 1)
    backoff = 1.0
    for attempt in range(1, max_attempts + 1):
        try:
            return generate_content(parts, json_output=True, timeout=timeout)
        except requests.exceptions.HTTPError as e:
            resp = e.response
            status = getattr(resp, "status_code", None)
            body = (resp.text or "")[:1000] if resp is not None else ""
            if status == 429 and "quota" in body.lower():
                current_app.logger.error("Gemini quota exhausted, not retrying; body=%s", body)
                raise
            if attempt >= max_attempts or not (status == 429 or (status and 500 <= status < 600)):
                raise
            wait = backoff
            try:
                ra = resp.headers.get("Retry-After") if resp is not None else None
                if ra:
                    wait = float(ra)
            except (TypeError, ValueError):
                wait = backoff
            current_app.logger.warning(
                "Gemini analysis returned %s, attempt %d/%d, retrying in %ss", status, attempt, max_attempts, wait
            )
        except requests.exceptions.RequestException:
            if attempt >= max_attempts:
                raise
            wait = backoff
            current_app.logger.warning("Gemini network error, attempt %d/%d, retrying in %ss", attempt, max_attempts, wait)
        time.sleep(wait + random.uniform(0, 0.5))
        backoff *= 2


def analyze_transcription(text: str) -> Dict[str, Any]:
    """Structured analysis of a transcript. Never raises.

    Any failure (no key, network, bad JSON, missing fields) yields the
    fallback analysis so the transcript itself is never lost.
    """
    if not _api_key():
        current_app.logger.warning("GEMINI_API_KEY not configured; returning fallback analysis")
        return fallback_analysis()

    prompt = ANALYSIS_PROMPT.format(
        text=text or "",
        language=current_app.config.get("TRANSCRIPT_LANGUAGE") or "Brazilian Portuguese",
    )
    try:
        resp = _post_with_retry([{"text": prompt}], timeout=current_app.config.get("ANALYSIS_TIMEOUT_SEC"))
        return coerce_analysis(_parse_json_block(extract_text(resp)))
    except Exception:
        current_app.logger.exception("Gemini analysis failed, using fallback analysis")
        return fallback_analysis()
