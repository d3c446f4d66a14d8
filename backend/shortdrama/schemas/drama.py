from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

from shortdrama.models.all_models import ProjectStatus, EpisodeStatus, TimeOfDay


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    total_episodes: Optional[int] = Field(default=10, ge=1)
    settings: Optional[Dict[str, Any]] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    total_episodes: Optional[int] = Field(default=None, ge=1)
    status: Optional[ProjectStatus] = None
    cover_image: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class ProjectOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    total_episodes: Optional[int] = None
    status: Optional[str] = None
    cover_image: Optional[str] = None
    settings: Optional[Dict[str, Any]] = {}
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        from_attributes = True


class ProjectSummaryOut(ProjectOut):
    character_count: int = 0
    scene_count: int = 0
    episode_count: int = 0


class AngleImageOut(BaseModel):
    id: int
    angle: str
    file_path: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        from_attributes = True


class CharacterTraits(BaseModel):
    age: Optional[str] = None
    personality: Optional[str] = None
    appearance: Optional[str] = None


class CharacterCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    avatar_path: Optional[str] = None
    traits: Optional[CharacterTraits] = None
    voice_id: Optional[str] = None


class CharacterUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    avatar_path: Optional[str] = None
    traits: Optional[CharacterTraits] = None
    voice_id: Optional[str] = None


class CharacterOut(BaseModel):
    id: int
    project_id: int
    name: str
    description: Optional[str] = None
    avatar_path: Optional[str] = None
    traits: Optional[Dict[str, Any]] = {}
    voice_id: Optional[str] = None
    angle_images: List[AngleImageOut] = []
    uploaded_count: int = 0
    missing_angles: List[str] = []

    class Config:
        from_attributes = True


class SceneCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    background_path: Optional[str] = None
    location: Optional[str] = None
    time_of_day: Optional[TimeOfDay] = None


class SceneUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    background_path: Optional[str] = None
    location: Optional[str] = None
    time_of_day: Optional[TimeOfDay] = None


class SceneOut(BaseModel):
    id: int
    project_id: int
    name: str
    description: Optional[str] = None
    background_path: Optional[str] = None
    location: Optional[str] = None
    time_of_day: Optional[str] = None
    angle_images: List[AngleImageOut] = []
    uploaded_count: int = 0
    missing_angles: List[str] = []

    class Config:
        from_attributes = True


class AngleImagesOut(BaseModel):
    angle_images: List[AngleImageOut] = []
    uploaded_count: int = 0
    missing_angles: List[str] = []
    image: Optional[AngleImageOut] = None
    deleted_angle: Optional[str] = None


class EpisodeCreate(BaseModel):
    episode_number: int = Field(..., ge=1)
    title: Optional[str] = None
    synopsis: Optional[str] = None


class EpisodeUpdate(BaseModel):
    title: Optional[str] = None
    synopsis: Optional[str] = None
    dialogue_text: Optional[str] = None
    status: Optional[EpisodeStatus] = None


class EpisodeOut(BaseModel):
    id: int
    project_id: int
    episode_number: int
    title: Optional[str] = None
    synopsis: Optional[str] = None
    dialogue_text: Optional[str] = None
    status: Optional[str] = None

    class Config:
        from_attributes = True


class GenerateCharactersRequest(BaseModel):
    description: Optional[str] = None
    provider: Optional[str] = None


class GenerateScenesRequest(BaseModel):
    description: Optional[str] = None
    provider: Optional[str] = None


class GenerateOutlineRequest(BaseModel):
    description: Optional[str] = None
    total_episodes: Optional[int] = Field(default=None, ge=1)
    provider: Optional[str] = None


class GenerateDialogueRequest(BaseModel):
    outline: Optional[str] = None
    scene_id: Optional[int] = None
    provider: Optional[str] = None


class GenerateShotsRequest(BaseModel):
    dialogue_text: Optional[str] = None
    provider: Optional[str] = None
