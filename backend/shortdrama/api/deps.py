from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from shortdrama.core.config import settings
from shortdrama.db.session import get_db, SessionLocal
from shortdrama.models.all_models import Project, Episode, Character, Scene, Storyboard, Shot
from shortdrama.services.drama_service import DramaGenerationService
from shortdrama.services.generation_service import GenerationTracker
from shortdrama.services.llm_service import TextGenerationService, build_text_generation_service
from shortdrama.services.media_service import ComfyUIService
from shortdrama.services.tts_service import TTSService

# Provider clients are built once from settings; tests swap them through app.dependency_overrides.
_tts_service = TTSService(settings.elevenlabs_config(), settings.UPLOAD_DIR)
_media_service = ComfyUIService(settings.comfyui_config(), settings.UPLOAD_DIR)
_text_service = build_text_generation_service(settings)


def get_tts_service() -> TTSService:
    return _tts_service


def get_media_service() -> ComfyUIService:
    return _media_service


def get_text_service() -> TextGenerationService:
    return _text_service


def get_generation_tracker(
    tts_service=Depends(get_tts_service),
    media_service=Depends(get_media_service),
) -> GenerationTracker:
    return GenerationTracker(SessionLocal, speech_provider=tts_service, video_provider=media_service)


def get_drama_service(text_service=Depends(get_text_service)) -> DramaGenerationService:
    return DramaGenerationService(text_service)


def get_project_or_404(project_id: int, db: Session = Depends(get_db)) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def get_episode_or_404(episode_id: int, db: Session = Depends(get_db)) -> Episode:
    episode = db.query(Episode).filter(Episode.id == episode_id).first()
    if not episode:
        raise HTTPException(status_code=404, detail="Episode not found")
    return episode


def get_character_or_404(character_id: int, db: Session = Depends(get_db)) -> Character:
    character = db.query(Character).filter(Character.id == character_id).first()
    if not character:
        raise HTTPException(status_code=404, detail="Character not found")
    return character


def get_scene_or_404(scene_id: int, db: Session = Depends(get_db)) -> Scene:
    scene = db.query(Scene).filter(Scene.id == scene_id).first()
    if not scene:
        raise HTTPException(status_code=404, detail="Scene not found")
    return scene


def get_storyboard_or_404(storyboard_id: int, db: Session = Depends(get_db)) -> Storyboard:
    storyboard = db.query(Storyboard).filter(Storyboard.id == storyboard_id).first()
    if not storyboard:
        raise HTTPException(status_code=404, detail="Storyboard not found")
    return storyboard


def get_shot_or_404(shot_id: int, db: Session = Depends(get_db)) -> Shot:
    shot = db.query(Shot).filter(Shot.id == shot_id).first()
    if not shot:
        raise HTTPException(status_code=404, detail="Shot not found")
    return shot
