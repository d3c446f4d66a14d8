"""Generation lifecycle of a shot.

A shot moves through ``not_started -> in_progress -> done | failed``. ``failed``
and ``done`` may re-enter ``in_progress`` on a new request. The tracker is the
only writer of ``status``, ``generation_*`` and the three artifact columns, and
every write it makes is a partial UPDATE of those columns so concurrent
authoring edits to other fields are never overwritten.

At most one attempt per shot is in flight: entering ``in_progress`` is a single
conditional UPDATE (compare-and-set on the persisted status). Each database step
uses its own short session, so nothing is held open while the provider runs.
There is no retry, timeout or cancellation here; callers decide whether to
request again.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from shortdrama.core.errors import NotFound, MissingInput, Conflict, ProviderFailure, InvalidRequest
from shortdrama.models.all_models import (
    Character,
    GenerationKind,
    Scene,
    Shot,
    ShotStatus,
    utcnow_iso,
)
from shortdrama.schemas.shot import GenerationInput, ShotOut

logger = logging.getLogger("generation_service")

ARTIFACT_FIELDS = {
    GenerationKind.SPEECH: "tts_audio_path",
    GenerationKind.VIDEO: "video_path",
    GenerationKind.LIP_SYNC: "lip_sync_video_path",
}


@dataclass
class GenerationPlan:
    kind: GenerationKind
    output_subdir: str
    text: Optional[str] = None
    voice_id: Optional[str] = None
    prompt: str = ""
    character_image: Optional[str] = None
    scene_image: Optional[str] = None
    audio: Optional[str] = None


def _first_non_blank(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _pick_angle_image(angle_images) -> Optional[str]:
    front = next((img for img in angle_images if img.angle == "front"), None)
    if front is not None:
        return front.file_path
    return angle_images[0].file_path if angle_images else None


def primary_character_id(shot: Shot) -> Optional[int]:
    if shot.character_id:
        return shot.character_id
    for item in shot.character_ids or []:
        if item:
            return int(item)
    return None


def resolve_character_image(db: Session, shot: Shot) -> Optional[str]:
    """Participant reference: explicit override, then front/any angle image, then avatar."""
    if _first_non_blank(shot.character_image):
        return shot.character_image.strip()
    character_id = primary_character_id(shot)
    if not character_id:
        return None
    character = db.query(Character).filter(Character.id == character_id).first()
    if character is None:
        return None
    return _first_non_blank(_pick_angle_image(character.angle_images), character.avatar_path)


def resolve_scene_image(db: Session, shot: Shot) -> Optional[str]:
    """Location reference: explicit override, then front/any angle image, then background."""
    if _first_non_blank(shot.scene_image):
        return shot.scene_image.strip()
    if not shot.scene_id:
        return None
    scene = db.query(Scene).filter(Scene.id == shot.scene_id).first()
    if scene is None:
        return None
    return _first_non_blank(_pick_angle_image(scene.angle_images), scene.background_path)


def resolve_voice_id(db: Session, shot: Shot, requested: Optional[str]) -> Optional[str]:
    if _first_non_blank(requested):
        return requested.strip()
    character_id = primary_character_id(shot)
    if character_id:
        character = db.query(Character).filter(Character.id == character_id).first()
        if character is not None and _first_non_blank(character.voice_id):
            return character.voice_id
    project_settings = (shot.episode.project.settings or {}) if shot.episode and shot.episode.project else {}
    return _first_non_blank(project_settings.get("defaultVoiceId"))


class GenerationTracker:
    def __init__(self, session_factory: Callable[[], Session], speech_provider: Any, video_provider: Any):
        self.session_factory = session_factory
        self.speech_provider = speech_provider
        self.video_provider = video_provider

    # --- Reads ---

    def poll_status(self, shot_id: int) -> ShotOut:
        with self.session_factory() as session:
            shot = session.query(Shot).filter(Shot.id == shot_id).first()
            if shot is None:
                raise NotFound("Shot not found")
            return ShotOut.model_validate(shot)

    def _prepare(self, shot_id: int, kind: GenerationKind, gen_input: GenerationInput) -> GenerationPlan:
        with self.session_factory() as session:
            shot = session.query(Shot).filter(Shot.id == shot_id).first()
            if shot is None:
                raise NotFound("Shot not found")
            if shot.status == ShotStatus.IN_PROGRESS.value:
                raise Conflict("Generation already in progress for this shot")

            project_id = shot.episode.project_id if shot.episode else 0
            prompt = _first_non_blank(gen_input.prompt, shot.video_prompt, shot.shot_description) or ""

            if kind == GenerationKind.SPEECH:
                text = _first_non_blank(gen_input.text, shot.shot_description)
                if not text:
                    raise MissingInput("Speech generation requires text or a shot description")
                return GenerationPlan(
                    kind=kind,
                    output_subdir=f"{project_id}/audio",
                    text=text,
                    voice_id=resolve_voice_id(session, shot, gen_input.voice_id),
                )

            character_image = resolve_character_image(session, shot)
            if kind == GenerationKind.VIDEO:
                scene_image = resolve_scene_image(session, shot)
                missing = [
                    label
                    for label, value in (("character reference image", character_image), ("scene reference image", scene_image))
                    if not value
                ]
                if missing:
                    raise MissingInput(f"Video generation requires a {' and a '.join(missing)}")
                return GenerationPlan(
                    kind=kind,
                    output_subdir=f"{project_id}/videos",
                    prompt=prompt,
                    character_image=character_image,
                    scene_image=scene_image,
                )

            if not character_image:
                raise MissingInput("Lip sync requires a character reference image")
            if not _first_non_blank(shot.tts_audio_path):
                raise MissingInput("Lip sync requires generated speech audio; run speech generation first")
            return GenerationPlan(
                kind=kind,
                output_subdir=f"{project_id}/videos",
                prompt=prompt,
                character_image=character_image,
                audio=shot.tts_audio_path,
            )

    # --- Tracker-owned writes ---

    def _claim(self, shot_id: int, kind: GenerationKind) -> None:
        with self.session_factory() as session:
            claimed = (
                session.query(Shot)
                .filter(
                    Shot.id == shot_id,
                    or_(Shot.status.is_(None), Shot.status != ShotStatus.IN_PROGRESS.value),
                )
                .update(
                    {
                        Shot.status: ShotStatus.IN_PROGRESS.value,
                        Shot.generation_kind: kind.value,
                        Shot.generation_error: None,
                        Shot.generation_updated_at: utcnow_iso(),
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            if claimed:
                logger.info(f"[generation] shot={shot_id} kind={kind.value} status->in_progress")
                return
            exists = session.query(Shot.id).filter(Shot.id == shot_id).first()
        if exists is None:
            raise NotFound("Shot not found")
        raise Conflict("Generation already in progress for this shot")

    def _finish(self, shot_id: int, kind: GenerationKind, values: Dict[Any, Any]) -> ShotOut:
        values[Shot.generation_updated_at] = utcnow_iso()
        with self.session_factory() as session:
            updated = session.query(Shot).filter(
                Shot.id == shot_id,
                Shot.status == ShotStatus.IN_PROGRESS.value,
            ).update(values, synchronize_session=False)
            session.commit()
            shot = session.query(Shot).filter(Shot.id == shot_id).first()
            if shot is None:
                # Deleted by an authoring client while the provider was running.
                raise NotFound("Shot was deleted during generation")
            if not updated:
                # Another writer (e.g. the startup sweep) settled this attempt first.
                raise Conflict("Generation attempt was superseded", f"shot status is now {shot.status}")
            return ShotOut.model_validate(shot)

    def _complete(self, shot_id: int, kind: GenerationKind, artifact: str) -> ShotOut:
        view = self._finish(shot_id, kind, {
            getattr(Shot, ARTIFACT_FIELDS[kind]): artifact,
            Shot.status: ShotStatus.DONE.value,
            Shot.generation_error: None,
        })
        logger.info(f"[generation] shot={shot_id} kind={kind.value} status->done artifact={artifact}")
        return view

    def _fail(self, shot_id: int, kind: GenerationKind, reason: str) -> None:
        logger.warning(f"[generation] shot={shot_id} kind={kind.value} status->failed reason={reason}")
        try:
            self._finish(shot_id, kind, {
                Shot.status: ShotStatus.FAILED.value,
                Shot.generation_error: reason[:2000],
            })
        except (NotFound, Conflict):
            pass

    # --- Provider dispatch ---

    async def _invoke(self, plan: GenerationPlan) -> Any:
        if plan.kind == GenerationKind.SPEECH:
            return await self.speech_provider.generate_speech(plan.text, plan.voice_id, subdir=plan.output_subdir)
        if plan.kind == GenerationKind.VIDEO:
            return await self.video_provider.image_to_video(
                plan.character_image,
                plan.prompt,
                reference_image=plan.scene_image,
                subdir=plan.output_subdir,
            )
        return await self.video_provider.lip_sync(
            plan.character_image,
            plan.audio,
            plan.prompt,
            subdir=plan.output_subdir,
        )

    def _artifact_from_result(self, result: Any) -> str:
        if not isinstance(result, dict):
            raise ProviderFailure("Malformed provider response", repr(result)[:300])
        if result.get("error"):
            details = result.get("details")
            raise ProviderFailure(str(result["error"]), str(details)[:1000] if details else None)
        url = result.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ProviderFailure("Provider returned no artifact reference")
        return url.strip()

    async def request_generation(self, shot_id: int, kind: Any, gen_input: Optional[GenerationInput] = None) -> ShotOut:
        try:
            kind = GenerationKind(kind)
        except ValueError:
            raise InvalidRequest(f"Unsupported generation kind: {kind}")
        gen_input = gen_input or GenerationInput()

        plan = self._prepare(shot_id, kind, gen_input)
        self._claim(shot_id, kind)

        try:
            result = await self._invoke(plan)
            artifact = self._artifact_from_result(result)
        except ProviderFailure as e:
            self._fail(shot_id, kind, str(e))
            raise
        except asyncio.CancelledError:
            self._fail(shot_id, kind, "Generation cancelled before the provider returned")
            raise
        except Exception as e:
            logger.exception(f"[generation] shot={shot_id} kind={kind.value} provider raised")
            diagnostic = f"{type(e).__name__}: {e}"
            self._fail(shot_id, kind, diagnostic)
            raise ProviderFailure("Provider call failed", diagnostic) from e

        try:
            return self._complete(shot_id, kind, artifact)
        except Conflict:
            logger.warning(f"[generation] shot={shot_id} kind={kind.value} superseded; dropping artifact={artifact}")
            raise
        except NotFound:
            raise
        except Exception as e:
            self._fail(shot_id, kind, f"Failed to store artifact: {e}")
            raise
