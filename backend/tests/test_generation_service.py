import asyncio
import datetime

import pytest

from shortdrama.core.errors import Conflict, InvalidRequest, MissingInput, NotFound, ProviderFailure
from shortdrama.db.init_db import recover_interrupted_generations
from shortdrama.db.session import SessionLocal
from shortdrama.models.all_models import Shot, utcnow_iso
from shortdrama.schemas.shot import GenerationInput


ARTIFACT_FIELDS = ("tts_audio_path", "video_path", "lip_sync_video_path")


def _artifacts(view):
    return {name: getattr(view, name) for name in ARTIFACT_FIELDS}


class TestPreconditions:
    def test_speech_without_text_or_description_is_missing_input(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="")

        with pytest.raises(MissingInput):
            asyncio.run(tracker.request_generation(shot.id, "speech"))

        assert tracker.poll_status(shot.id).status == "not_started"
        assert speech.calls == []

    def test_lip_sync_without_speech_artifact_is_missing_input(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, shot_description="Hello world")

        with pytest.raises(MissingInput):
            asyncio.run(tracker.request_generation(shot.id, "lip_sync"))

        assert tracker.poll_status(shot.id).status == "not_started"
        assert video.calls == []

    def test_video_without_location_image_is_missing_input(self, tracker, make_shot):
        shot = make_shot(with_character=True)

        with pytest.raises(MissingInput) as excinfo:
            asyncio.run(tracker.request_generation(shot.id, "video"))

        assert "scene reference image" in str(excinfo.value)
        assert tracker.poll_status(shot.id).status == "not_started"

    def test_unknown_shot_is_not_found(self, tracker):
        with pytest.raises(NotFound):
            asyncio.run(tracker.request_generation(9999, "speech", None))
        with pytest.raises(NotFound):
            tracker.poll_status(9999)

    def test_unknown_kind_is_invalid_request(self, tracker, make_shot):
        shot = make_shot(shot_description="Hello world")
        with pytest.raises(InvalidRequest):
            asyncio.run(tracker.request_generation(shot.id, "music"))
        assert tracker.poll_status(shot.id).status == "not_started"

    def test_request_while_in_progress_is_conflict_and_changes_nothing(self, tracker, speech, make_shot):
        shot = make_shot(
            shot_description="Hello world",
            status="in_progress",
            generation_kind="speech",
            tts_audio_path="/uploads/1/audio/old.mp3",
            video_path="/uploads/1/videos/old.mp4",
        )
        before = tracker.poll_status(shot.id)

        for kind in ("speech", "video", "lip_sync"):
            with pytest.raises(Conflict):
                asyncio.run(tracker.request_generation(shot.id, kind))

        after = tracker.poll_status(shot.id)
        assert after.status == "in_progress"
        assert _artifacts(after) == _artifacts(before)
        assert after.generation_updated_at == before.generation_updated_at
        assert speech.calls == []


class TestSuccessfulGeneration:
    def test_speech_from_description_moves_through_in_progress_to_done(self, tracker, make_shot):
        shot = make_shot(shot_description="Hello world")

        class GatedSpeech:
            def __init__(self):
                self.started = asyncio.Event()
                self.gate = asyncio.Event()
                self.text = None

            async def generate_speech(self, text, voice_id=None, subdir="audio"):
                self.text = text
                self.started.set()
                await self.gate.wait()
                return {"url": "/uploads/audio/tts_1.mp3"}

        async def scenario():
            provider = GatedSpeech()
            tracker.speech_provider = provider
            task = asyncio.create_task(tracker.request_generation(shot.id, "speech"))
            await provider.started.wait()
            during = tracker.poll_status(shot.id)
            provider.gate.set()
            return provider, during, await task

        provider, during, result = asyncio.run(scenario())

        assert provider.text == "Hello world"
        assert during.status == "in_progress"
        assert during.generation_kind == "speech"
        assert result.status == "done"
        assert result.tts_audio_path == "/uploads/audio/tts_1.mp3"
        assert tracker.poll_status(shot.id).tts_audio_path == "/uploads/audio/tts_1.mp3"

    def test_success_changes_only_the_matching_artifact(self, tracker, make_shot):
        shot = make_shot(
            shot_description="Hello world",
            status="done",
            tts_audio_path="/uploads/1/audio/old.mp3",
            video_path="/uploads/1/videos/old.mp4",
            lip_sync_video_path="/uploads/1/videos/old_lipsync.mp4",
        )
        before = _artifacts(tracker.poll_status(shot.id))

        result = asyncio.run(tracker.request_generation(shot.id, "speech"))

        after = _artifacts(result)
        changed = [name for name in ARTIFACT_FIELDS if after[name] != before[name]]
        assert changed == ["tts_audio_path"]
        assert result.status == "done"
        assert result.generation_error is None

    def test_video_uses_resolved_reference_images_and_prompt(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True, shot_description="They meet", video_prompt="slow push in")

        result = asyncio.run(tracker.request_generation(shot.id, "video"))

        call = video.calls[0]
        assert call["image"] == "/uploads/characters/1/front.png"
        assert call["reference_image"] == "/uploads/scenes/rooftop.png"
        assert call["prompt"] == "slow push in"
        assert result.video_path.endswith(".mp4")
        assert result.status == "done"

    def test_explicit_reference_overrides_win(self, tracker, video, make_shot):
        shot = make_shot(
            with_character=True,
            with_scene=True,
            character_image="/uploads/custom/hero.png",
            scene_image="https://cdn.example.com/street.png",
        )

        asyncio.run(tracker.request_generation(shot.id, "video"))

        assert video.calls[0]["image"] == "/uploads/custom/hero.png"
        assert video.calls[0]["reference_image"] == "https://cdn.example.com/street.png"

    def test_lip_sync_uses_existing_speech_artifact(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, tts_audio_path="/uploads/1/audio/tts_9.mp3")

        result = asyncio.run(tracker.request_generation(shot.id, "lip_sync"))

        assert video.calls[0]["audio"] == "/uploads/1/audio/tts_9.mp3"
        assert result.lip_sync_video_path is not None
        assert result.tts_audio_path == "/uploads/1/audio/tts_9.mp3"

    def test_voice_falls_back_to_character_then_project_default(self, tracker, speech, make_shot):
        with_character = make_shot(with_character=True, shot_description="Hi")
        asyncio.run(tracker.request_generation(with_character.id, "speech"))
        assert speech.calls[-1]["voice_id"] == "voice-lin"

        project_default = make_shot(shot_description="Hi", project_settings={"defaultVoiceId": "voice-project"})
        asyncio.run(tracker.request_generation(project_default.id, "speech"))
        assert speech.calls[-1]["voice_id"] == "voice-project"

        asyncio.run(tracker.request_generation(with_character.id, "speech", GenerationInput(text="Override", voice_id="voice-x")))
        assert speech.calls[-1]["voice_id"] == "voice-x"
        assert speech.calls[-1]["text"] == "Override"

    def test_speech_output_is_stored_per_project(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hi")
        project_id = shot.episode.project_id

        asyncio.run(tracker.request_generation(shot.id, "speech"))

        assert speech.calls[0]["subdir"] == f"{project_id}/audio"

    def test_authoring_edit_during_generation_is_preserved(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True, shot_description="Before")

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()
            task = asyncio.create_task(tracker.request_generation(shot.id, "video"))
            await video.started.wait()
            with SessionLocal() as session:
                row = session.query(Shot).filter(Shot.id == shot.id).first()
                row.shot_description = "Edited while rendering"
                session.commit()
            video.gate.set()
            return await task

        result = asyncio.run(scenario())

        assert result.status == "done"
        assert result.shot_description == "Edited while rendering"


class TestFailedGeneration:
    def test_provider_exception_leaves_shot_failed(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)
        video.exc = RuntimeError("GPU out of memory")

        with pytest.raises(ProviderFailure) as excinfo:
            asyncio.run(tracker.request_generation(shot.id, "video"))

        view = tracker.poll_status(shot.id)
        assert view.status == "failed"
        assert "GPU out of memory" in view.generation_error
        assert "GPU out of memory" in str(excinfo.value)
        assert view.video_path is None

    def test_provider_error_result_is_surfaced(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hello world", tts_audio_path="/uploads/1/audio/keep.mp3")
        speech.result = {"error": "ElevenLabs API error 500", "details": "upstream down"}

        with pytest.raises(ProviderFailure) as excinfo:
            asyncio.run(tracker.request_generation(shot.id, "speech"))

        assert str(excinfo.value) == "ElevenLabs API error 500: upstream down"
        view = tracker.poll_status(shot.id)
        assert view.status == "failed"
        assert view.generation_error == "ElevenLabs API error 500: upstream down"
        assert view.tts_audio_path == "/uploads/1/audio/keep.mp3"

    @pytest.mark.parametrize("malformed", [{"metadata": {}}, {"url": "   "}, "ok", ["not", "a", "dict"]])
    def test_malformed_result_fails_without_artifact(self, tracker, speech, make_shot, malformed):
        shot = make_shot(shot_description="Hello world")
        speech.result = malformed

        with pytest.raises(ProviderFailure):
            asyncio.run(tracker.request_generation(shot.id, "speech"))

        view = tracker.poll_status(shot.id)
        assert view.status == "failed"
        assert view.tts_audio_path is None
        assert view.generation_error

    def test_cancelled_attempt_does_not_stay_in_progress(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()
            task = asyncio.create_task(tracker.request_generation(shot.id, "video"))
            await video.started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        assert tracker.poll_status(shot.id).status == "failed"

    def test_failed_then_done_round_trip(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hello world")
        assert tracker.poll_status(shot.id).status == "not_started"

        speech.exc = RuntimeError("network down")
        with pytest.raises(ProviderFailure):
            asyncio.run(tracker.request_generation(shot.id, "speech"))
        failed = tracker.poll_status(shot.id)
        assert failed.status == "failed"
        assert failed.tts_audio_path is None

        speech.exc = None
        speech.result = {"url": "/uploads/1/audio/tts_final.mp3"}
        done = asyncio.run(tracker.request_generation(shot.id, "speech"))

        assert done.status == "done"
        assert done.tts_audio_path == "/uploads/1/audio/tts_final.mp3"
        assert done.generation_error is None

    def test_done_shot_can_be_regenerated(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hello world")
        speech.result = {"url": "/uploads/1/audio/first.mp3"}
        asyncio.run(tracker.request_generation(shot.id, "speech"))
        speech.result = {"url": "/uploads/1/audio/second.mp3"}

        result = asyncio.run(tracker.request_generation(shot.id, "speech"))

        assert result.status == "done"
        assert result.tts_audio_path == "/uploads/1/audio/second.mp3"


class TestConcurrency:
    def test_second_request_during_flight_gets_conflict(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()
            first = asyncio.create_task(tracker.request_generation(shot.id, "video"))
            await video.started.wait()
            with pytest.raises(Conflict):
                await tracker.request_generation(shot.id, "video")
            during = tracker.poll_status(shot.id)
            video.gate.set()
            return during, await first

        during, result = asyncio.run(scenario())

        assert during.status == "in_progress"
        assert result.status == "done"
        assert len(video.calls) == 1

    def test_simultaneous_requests_admit_exactly_one(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()

            async def release_when_started():
                await video.started.wait()
                video.gate.set()

            return await asyncio.gather(
                tracker.request_generation(shot.id, "video"),
                tracker.request_generation(shot.id, "video"),
                release_when_started(),
                return_exceptions=True,
            )

        first, second, _ = asyncio.run(scenario())
        outcomes = [first, second]

        conflicts = [o for o in outcomes if isinstance(o, Conflict)]
        successes = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(conflicts) == 1
        assert len(successes) == 1
        assert successes[0].status == "done"
        assert len(video.calls) == 1

    def test_claim_lost_after_precheck_is_conflict(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hello world")
        prepare = tracker._prepare

        def prepare_then_lose_race(shot_id, kind, gen_input):
            plan = prepare(shot_id, kind, gen_input)
            # Another worker claims the shot between the read and the conditional update.
            with SessionLocal() as session:
                session.query(Shot).filter(Shot.id == shot_id).update(
                    {Shot.status: "in_progress", Shot.generation_kind: "video"},
                    synchronize_session=False,
                )
                session.commit()
            return plan

        tracker._prepare = prepare_then_lose_race

        with pytest.raises(Conflict):
            asyncio.run(tracker.request_generation(shot.id, "speech"))

        view = tracker.poll_status(shot.id)
        assert view.status == "in_progress"
        assert view.generation_kind == "video"
        assert view.generation_updated_at is None
        assert view.tts_audio_path is None
        assert speech.calls == []


class TestPolling:
    def test_poll_status_has_no_side_effects(self, tracker, speech, make_shot):
        shot = make_shot(shot_description="Hello world")
        asyncio.run(tracker.request_generation(shot.id, "speech"))

        snapshots = [tracker.poll_status(shot.id).model_dump() for _ in range(5)]

        assert all(snapshot == snapshots[0] for snapshot in snapshots)
        assert len(speech.calls) == 1

    def test_startup_recovery_fails_interrupted_shots(self, tracker, make_shot):
        stuck = make_shot(status="in_progress", generation_kind="video")
        idle = make_shot(status="done")

        assert recover_interrupted_generations() == 1

        view = tracker.poll_status(stuck.id)
        assert view.status == "failed"
        assert "interrupted" in view.generation_error
        assert tracker.poll_status(idle.id).status == "done"

    def test_startup_recovery_only_sweeps_stale_attempts(self, tracker, make_shot):
        two_hours_ago = (datetime.datetime.utcnow() - datetime.timedelta(hours=2)).isoformat()
        stale = make_shot(status="in_progress", generation_kind="video", generation_updated_at=two_hours_ago)
        fresh = make_shot(status="in_progress", generation_kind="video", generation_updated_at=utcnow_iso())

        assert recover_interrupted_generations(stale_after_seconds=3600) == 1

        assert tracker.poll_status(stale.id).status == "failed"
        assert tracker.poll_status(fresh.id).status == "in_progress"

    def test_startup_recovery_leaves_live_attempt_to_finish(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()
            task = asyncio.create_task(tracker.request_generation(shot.id, "video"))
            await video.started.wait()
            swept = recover_interrupted_generations()
            video.gate.set()
            return swept, await task

        swept, result = asyncio.run(scenario())

        assert swept == 0
        assert result.status == "done"
        assert result.video_path is not None
        assert tracker.poll_status(shot.id).status == "done"

    def test_success_after_attempt_was_settled_elsewhere_is_conflict(self, tracker, video, make_shot):
        shot = make_shot(with_character=True, with_scene=True)

        async def scenario():
            video.started = asyncio.Event()
            video.gate = asyncio.Event()
            task = asyncio.create_task(tracker.request_generation(shot.id, "video"))
            await video.started.wait()
            assert recover_interrupted_generations(stale_after_seconds=-60) == 1
            video.gate.set()
            with pytest.raises(Conflict):
                await task

        asyncio.run(scenario())

        view = tracker.poll_status(shot.id)
        assert view.status == "failed"
        assert view.video_path is None
        assert "interrupted" in view.generation_error
        assert len(video.calls) == 1
