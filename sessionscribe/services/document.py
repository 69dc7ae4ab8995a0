"""Human-readable transcript document stored next to the metadata."""

TRANSCRIPT_SEPARATOR = "=== Transcript ==="

_HEADER_FIELDS = (
    ("student_name", "Student"),
    ("student_id", "Enrolment"),
    ("course", "Course"),
    ("session_date", "Session date"),
    ("meeting_id", "Meeting ID"),
    ("request_id", "Request ID"),
)


def _pct(value):
    try:
        return f"{float(value or 0) * 100:.1f}%"
    except (TypeError, ValueError):
        return "0.0%"


def format_transcript_document(transcription, context=None, analysis=None):
    context = context or {}
    analysis = analysis or {}

    header = ["=== Session details ==="]
    for key, label in _HEADER_FIELDS:
        if context.get(key):
            header.append(f"{label}: {context[key]}")

    summary = ["=== Automatic summary ==="]
    if analysis.get("summary"):
        summary.append(f"Summary: {analysis['summary']}")
    s = analysis.get("sentiments")
    if isinstance(s, dict):
        summary.append(
            f"Sentiments: +{_pct(s.get('positive'))} / ~{_pct(s.get('neutral'))} / -{_pct(s.get('negative'))}"
        )
    if analysis.get("keywords"):
        summary.append("Keywords: " + ", ".join(analysis["keywords"]))
    if analysis.get("topics"):
        summary.append("Topics: " + ", ".join(analysis["topics"]))
    insights = analysis.get("actionable_insights") or []
    if insights:
        summary.append("Actionable insights:")
        for i, insight in enumerate(insights, start=1):
            summary.append(f"  {i}. {insight}")

    return "\n".join([
        "\n".join(header),
        "",
        "\n".join(summary),
        "",
        TRANSCRIPT_SEPARATOR,
        transcription or "",
    ])


def extract_raw_transcript(content):
    """Undo ``format_transcript_document``; plain text passes through."""
    content = content or ""
    idx = content.find(TRANSCRIPT_SEPARATOR)
    if idx == -1:
        return content
    return content[idx + len(TRANSCRIPT_SEPARATOR):].lstrip()
