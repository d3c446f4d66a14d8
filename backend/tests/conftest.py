import os
import tempfile

import pytest

# Point settings at a throwaway database and upload dir before shortdrama is imported.
_TMP_DIR = tempfile.mkdtemp(prefix="shortdrama-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["RATE_LIMIT_GENERATION"] = "10000/minute"
for _key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "ELEVENLABS_API_KEY"):
    os.environ[_key] = ""

from fastapi.testclient import TestClient  # noqa: E402

from shortdrama.core.config import TextProviderPolicy  # noqa: E402
from shortdrama.db.session import SessionLocal, engine  # noqa: E402
from shortdrama.models.all_models import (  # noqa: E402
    Base,
    Character,
    CharacterAngleImage,
    Episode,
    Project,
    Scene,
    Shot,
)
from shortdrama.services.generation_service import GenerationTracker  # noqa: E402
from shortdrama.services.llm_service import ChatProvider, TextGenerationService  # noqa: E402


class FakeSpeechProvider:
    """Stands in for TTSService. Returns ``result`` or raises ``exc``."""

    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.calls = []

    async def generate_speech(self, text, voice_id=None, subdir="audio"):
        self.calls.append({"text": text, "voice_id": voice_id, "subdir": subdir})
        if self.exc is not None:
            raise self.exc
        if self.result is not None:
            return self.result
        return {"url": f"/uploads/{subdir}/tts_{len(self.calls)}.mp3", "metadata": {"provider": "fake"}}

    async def get_voices(self):
        return [{"voice_id": "v1", "name": "Rachel"}]


class FakeVideoProvider:
    """Stands in for ComfyUIService.

    When ``gate`` is set, calls record themselves in ``started`` and block until
    the gate opens, which lets tests observe the in-flight state.
    """

    def __init__(self, result=None, exc=None):
        self.result = result
        self.exc = exc
        self.calls = []
        self.gate = None
        self.started = None

    async def _run(self, kind, **kwargs):
        self.calls.append({"kind": kind, **kwargs})
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.exc is not None:
            raise self.exc
        if self.result is not None:
            return self.result
        return {"url": f"/uploads/{kwargs['subdir']}/{kind}_{len(self.calls)}.mp4", "metadata": {"provider": "fake"}}

    async def image_to_video(self, image, prompt, reference_image=None, subdir="videos"):
        return await self._run("i2v", image=image, prompt=prompt, reference_image=reference_image, subdir=subdir)

    async def lip_sync(self, image, audio, prompt="", subdir="videos"):
        return await self._run("lipsync", image=image, audio=audio, prompt=prompt, subdir=subdir)


class ScriptedChatProvider(ChatProvider):
    """Text provider that replays canned responses."""

    def __init__(self, name, responses=None, configured=True):
        self.name = name
        self.responses = list(responses or [])
        self._configured = configured
        self.prompts = []

    @property
    def configured(self):
        return self._configured

    @property
    def model(self):
        return f"{self.name}-test"

    async def generate(self, prompt, system_prompt=None, temperature=None):
        self.prompts.append(prompt)
        return self.responses.pop(0) if self.responses else ""


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def speech():
    return FakeSpeechProvider()


@pytest.fixture
def video():
    return FakeVideoProvider()


@pytest.fixture
def chat():
    return ScriptedChatProvider("openai")


@pytest.fixture
def text_service(chat):
    return TextGenerationService([chat], TextProviderPolicy(precedence=("openai",)))


@pytest.fixture
def tracker(speech, video):
    return GenerationTracker(SessionLocal, speech_provider=speech, video_provider=video)


@pytest.fixture
def make_shot(db):
    """Factory: project + episode + shot, plus an optional character/scene with reference images."""

    def _make(with_character=False, with_scene=False, project_settings=None, **shot_fields):
        project = Project(name="Test Drama", description="A test drama", settings=project_settings or {})
        db.add(project)
        db.flush()
        episode = Episode(project_id=project.id, episode_number=1, title="Pilot")
        db.add(episode)
        db.flush()

        if with_character:
            character = Character(project_id=project.id, name="Lin", avatar_path="/uploads/characters/lin-avatar.png", voice_id="voice-lin")
            db.add(character)
            db.flush()
            db.add(CharacterAngleImage(character_id=character.id, angle="front", file_path="/uploads/characters/1/front.png"))
            shot_fields.setdefault("character_id", character.id)
        if with_scene:
            scene = Scene(project_id=project.id, name="Rooftop", background_path="/uploads/scenes/rooftop.png")
            db.add(scene)
            db.flush()
            shot_fields.setdefault("scene_id", scene.id)

        shot_fields.setdefault("shot_number", 1)
        shot = Shot(episode_id=episode.id, **shot_fields)
        db.add(shot)
        db.commit()
        db.refresh(shot)
        return shot

    return _make


@pytest.fixture
def client(speech, video, text_service):
    from shortdrama.api.deps import get_media_service, get_text_service, get_tts_service
    from shortdrama.main import app

    app.dependency_overrides[get_tts_service] = lambda: speech
    app.dependency_overrides[get_media_service] = lambda: video
    app.dependency_overrides[get_text_service] = lambda: text_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def chat_provider():
    """Factory for scripted text providers: ``chat_provider("anthropic", responses=[...], configured=False)``."""
    return ScriptedChatProvider
