from pydantic import BaseModel, Field, field_validator
from typing import Optional, List

from shortdrama.models.all_models import ShotType
from shortdrama.schemas.drama import EpisodeOut


def _validate_character_ids(value: Optional[List[int]]) -> Optional[List[int]]:
    if value is None:
        return value
    for item in value:
        if item <= 0:
            raise ValueError("character_ids must be an array of positive integers")
    return value


# --- Shots ---
# Create/update payloads carry authoring fields only. status and the artifact
# paths are written by GenerationTracker and are not accepted from clients.

class ShotCreate(BaseModel):
    shot_number: int = Field(..., ge=1)
    shot_type: Optional[ShotType] = None
    shot_description: Optional[str] = None
    camera_movement: Optional[str] = None
    dialogue_text: Optional[str] = None
    video_prompt: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    character_id: Optional[int] = None
    character_ids: Optional[List[int]] = None
    scene_id: Optional[int] = None
    character_image: Optional[str] = None
    scene_image: Optional[str] = None

    @field_validator("character_ids")
    @classmethod
    def check_character_ids(cls, value):
        return _validate_character_ids(value)


class ShotUpdate(BaseModel):
    storyboard_id: Optional[int] = None
    shot_number: Optional[int] = Field(default=None, ge=1)
    shot_type: Optional[ShotType] = None
    shot_description: Optional[str] = None
    camera_movement: Optional[str] = None
    dialogue_text: Optional[str] = None
    video_prompt: Optional[str] = None
    duration: Optional[float] = Field(default=None, gt=0)
    character_id: Optional[int] = None
    character_ids: Optional[List[int]] = None
    scene_id: Optional[int] = None
    character_image: Optional[str] = None
    scene_image: Optional[str] = None

    @field_validator("character_ids")
    @classmethod
    def check_character_ids(cls, value):
        return _validate_character_ids(value)


class ShotOut(BaseModel):
    id: int
    episode_id: int
    storyboard_id: Optional[int] = None
    shot_number: int
    shot_type: Optional[str] = None
    shot_description: Optional[str] = None
    camera_movement: Optional[str] = None
    dialogue_text: Optional[str] = None
    video_prompt: Optional[str] = None
    duration: Optional[float] = None
    character_id: Optional[int] = None
    character_ids: Optional[List[int]] = None
    scene_id: Optional[int] = None
    character_image: Optional[str] = None
    scene_image: Optional[str] = None

    tts_audio_path: Optional[str] = None
    video_path: Optional[str] = None
    lip_sync_video_path: Optional[str] = None

    status: str
    generation_kind: Optional[str] = None
    generation_error: Optional[str] = None
    generation_updated_at: Optional[str] = None

    class Config:
        from_attributes = True


class ShotStatusOut(BaseModel):
    id: int
    status: str
    generation_kind: Optional[str] = None
    generation_error: Optional[str] = None
    generation_updated_at: Optional[str] = None
    tts_audio_path: Optional[str] = None
    video_path: Optional[str] = None
    lip_sync_video_path: Optional[str] = None

    class Config:
        from_attributes = True


# --- Storyboards ---

class StoryboardCreate(BaseModel):
    board_number: int = Field(..., ge=1)
    title: Optional[str] = None
    description: Optional[str] = None


class StoryboardUpdate(BaseModel):
    board_number: Optional[int] = Field(default=None, ge=1)
    title: Optional[str] = None
    description: Optional[str] = None


class StoryboardOut(BaseModel):
    id: int
    episode_id: int
    board_number: int
    title: Optional[str] = None
    description: Optional[str] = None
    shots: List[ShotOut] = []

    class Config:
        from_attributes = True


class EpisodeDetailOut(EpisodeOut):
    storyboards: List[StoryboardOut] = []
    ungrouped_shots: List[ShotOut] = []


# --- Generation ---

class GenerationInput(BaseModel):
    text: Optional[str] = None
    voice_id: Optional[str] = None
    prompt: Optional[str] = None


class TTSGenerationRequest(BaseModel):
    shot_id: int
    text: Optional[str] = None
    voice_id: Optional[str] = None


class VideoGenerationRequest(BaseModel):
    shot_id: int
    prompt: Optional[str] = None


class LipSyncGenerationRequest(BaseModel):
    shot_id: int
    prompt: Optional[str] = None
