import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sessionscribe import create_app
from sessionscribe.extensions import db


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "JOB_QUEUE": "sync",
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "WORK_DIR": str(tmp_path / "work"),
        "TRANSCRIPTIONS_DIR": str(tmp_path / "transcriptions"),
        "GEMINI_API_KEY": "",
        "ANALYSIS_MAX_ATTEMPTS": 2,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def pipeline(app):
    return app.extensions["pipeline"]


@pytest.fixture
def store(pipeline):
    return pipeline.store
