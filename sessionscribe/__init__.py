import os

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from .extensions import db, migrate, dispatcher


def create_app(test_config=None):
    """App factory: config, extensions, pipeline and the transcription API."""
    app = Flask(__name__)
    app.config.from_object("config.Config")
    if test_config:
        app.config.update(test_config)
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    for key in ("UPLOAD_DIR", "WORK_DIR", "TRANSCRIPTIONS_DIR"):
        os.makedirs(app.config[key], exist_ok=True)

    db.init_app(app)
    migrate.init_app(app, db)
    dispatcher.init_app(app)

    from . import models  # noqa: F401 - register tables on db.metadata

    # alembic/env.py sets SKIP_CREATE_ALL so migrations own the schema there
    if not os.environ.get("SKIP_CREATE_ALL"):
        with app.app_context():
            db.create_all()

    from .services.pipeline import build_pipeline
    app.extensions["pipeline"] = build_pipeline(app)

    from .api.transcription import bp as transcription_bp
    app.register_blueprint(transcription_bp, url_prefix="/api/transcription")

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(e):
        return jsonify({"error": f"file exceeds {app.config.get('MAX_UPLOAD_MB')} MB"}), 413

    @app.get("/")
    def index():
        return jsonify({"service": "sessionscribe", "status": "ok"})

    return app
