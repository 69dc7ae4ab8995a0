import os
import sys

# ensure project root is on sys.path so `import sessionscribe` works when running this script
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sessionscribe import create_app
from sessionscribe.services.pipeline import Job, build_context, get_pipeline

# Runs the pipeline synchronously (no RQ, no thread pool).
# With a media path argument it goes through ffmpeg + Gemini; without one it
# feeds a short text transcript straight into analysis and storage.
#
#   python scripts/smoke_test_pipeline.py [path/to/recording.mp3]

SAMPLE_TEXT = (
    "Orientadora: Como foi a semana de estudos?\n"
    "Aluno: Consegui acompanhar as aulas, mas ainda tenho dificuldade com calculo."
)

app = create_app()
with app.app_context():
    pipeline = get_pipeline()
    context = build_context({
        "subject_id": "smoke-subject",
        "student_name": "Smoke Test",
        "student_id": "000",
        "session_date": "2026-01-01",
    })

    if len(sys.argv) > 1:
        job = Job(source_path=None, original_name=os.path.basename(sys.argv[1]), context=context)
        # the pipeline deletes its source, so work on a copy
        import shutil
        copy_path = os.path.join(app.config["UPLOAD_DIR"], f"smoke-{job.id}{os.path.splitext(sys.argv[1])[1]}")
        shutil.copyfile(sys.argv[1], copy_path)
        job.source_path = copy_path
        result = pipeline.run_media_job(job)
    else:
        job = Job(source_path=None, original_name="smoke.txt", context=context)
        result = pipeline.run_text_job(job, SAMPLE_TEXT)

    print("Job:", result.job_id, "state:", result.state.value)
    if result.error:
        print("Error:", result.error)
    else:
        print("Stored as:", result.file_name)
        print("Fallback analysis:", result.analysis.get("is_fallback"))
        print("Summary:", result.analysis.get("summary"))
