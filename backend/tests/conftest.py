"""Shared fixtures: isolated home dir, in-memory database, faked upstreams."""

import os
import tempfile

os.environ.setdefault("LEGALEASE_HOME", tempfile.mkdtemp(prefix="legalease-test-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from legalease import deps
from legalease.errors import AnalysisFailed
from legalease.models.base import init_db
from legalease.services.relay import RelayHub
from legalease.services.transcript_store import LatestTranscriptStore
from legalease.services.transcription import TranscriptFragment


class FakeLLM:
    def __init__(self, reply="Summary of the legal points."):
        self.reply = reply
        self.fail = False
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise AnalysisFailed("model unavailable")
        return self.reply


class FakeTranscriber:
    def __init__(self):
        self.texts = []
        self.error = None
        self.segments = []

    async def transcribe(self, segment):
        self.segments.append(segment)
        if self.error is not None:
            raise self.error
        text = self.texts.pop(0) if self.texts else ""
        return TranscriptFragment(text=text, confidence=0.9 if text else 0.0, encoding="LINEAR16")


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(eng)
    return eng


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def store():
    return LatestTranscriptStore()


@pytest.fixture
def hub():
    return RelayHub()


@pytest.fixture
def client(engine, llm, transcriber, store, hub):
    from legalease.main import app

    def _session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides.update(
        {
            deps.get_session: _session,
            deps.get_llm: lambda: llm,
            deps.get_store: lambda: store,
            deps.get_hub: lambda: hub,
            deps.get_transcriber: lambda: transcriber,
            deps.get_voice_transcriber: lambda: transcriber,
        }
    )
    # One shared event loop for HTTP calls and websocket sessions
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
