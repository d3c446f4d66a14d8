from sqlalchemy import Column, Integer, String, Text, ForeignKey, JSON, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from shortdrama.db.session import Base
import datetime
import enum


def utcnow_iso() -> str:
    return datetime.datetime.utcnow().isoformat()


class ProjectStatus(str, enum.Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class EpisodeStatus(str, enum.Enum):
    DRAFT = "draft"
    SCRIPTED = "scripted"
    IN_PRODUCTION = "in_production"
    COMPLETED = "completed"


class TimeOfDay(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    DAWN = "dawn"
    DUSK = "dusk"


class ShotType(str, enum.Enum):
    EXTREME_LONG = "extreme_long"
    LONG = "long"
    FULL = "full"
    MEDIUM_LONG = "medium_long"
    MEDIUM = "medium"
    MEDIUM_CLOSE = "medium_close"
    CLOSE_UP = "close_up"
    EXTREME_CLOSE_UP = "extreme_close_up"
    POV = "pov"
    TWO_SHOT = "two_shot"


class ShotStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class GenerationKind(str, enum.Enum):
    SPEECH = "speech"
    VIDEO = "video"
    LIP_SYNC = "lip_sync"


# Reference-image angles shared by characters and scenes.
IMAGE_ANGLES = (
    "front",
    "front_left",
    "left",
    "back_left",
    "back",
    "back_right",
    "right",
    "front_right",
    "top",
    "bottom",
)


class Project(Base):
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    total_episodes = Column(Integer, default=10)
    status = Column(String, default=ProjectStatus.DRAFT.value)
    cover_image = Column(String, nullable=True)

    # defaultVoiceId, style notes, etc.
    settings = Column(JSON, default=dict)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    characters = relationship("Character", back_populates="project", cascade="all, delete-orphan")
    scenes = relationship("Scene", back_populates="project", cascade="all, delete-orphan")
    episodes = relationship(
        "Episode",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Episode.episode_number",
    )


class Character(Base):
    __tablename__ = "characters"
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    avatar_path = Column(String, nullable=True)
    traits = Column(JSON, default=dict)  # age, personality, appearance
    voice_id = Column(String, nullable=True)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    project = relationship("Project", back_populates="characters")
    angle_images = relationship(
        "CharacterAngleImage",
        back_populates="character",
        cascade="all, delete-orphan",
        order_by="CharacterAngleImage.angle",
    )


class CharacterAngleImage(Base):
    __tablename__ = "character_angle_images"
    __table_args__ = (UniqueConstraint("character_id", "angle", name="uq_character_angle"),)
    id = Column(Integer, primary_key=True, index=True)
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=False, index=True)
    angle = Column(String, nullable=False)
    file_path = Column(String, nullable=False)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    character = relationship("Character", back_populates="angle_images")


class Scene(Base):
    __tablename__ = "scenes"
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    background_path = Column(String, nullable=True)
    location = Column(String, nullable=True)
    time_of_day = Column(String, nullable=True)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    project = relationship("Project", back_populates="scenes")
    angle_images = relationship(
        "SceneAngleImage",
        back_populates="scene",
        cascade="all, delete-orphan",
        order_by="SceneAngleImage.angle",
    )


class SceneAngleImage(Base):
    __tablename__ = "scene_angle_images"
    __table_args__ = (UniqueConstraint("scene_id", "angle", name="uq_scene_angle"),)
    id = Column(Integer, primary_key=True, index=True)
    scene_id = Column(Integer, ForeignKey("scenes.id"), nullable=False, index=True)
    angle = Column(String, nullable=False)
    file_path = Column(String, nullable=False)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    scene = relationship("Scene", back_populates="angle_images")


class Episode(Base):
    __tablename__ = "episodes"
    __table_args__ = (UniqueConstraint("project_id", "episode_number", name="uq_project_episode_number"),)
    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    episode_number = Column(Integer, nullable=False)
    title = Column(String, nullable=True)
    synopsis = Column(Text, nullable=True)
    # Generated or hand-written dialogue script (JSON text of action/dialogue lines)
    dialogue_text = Column(Text, nullable=True)
    status = Column(String, default=EpisodeStatus.DRAFT.value)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    project = relationship("Project", back_populates="episodes")
    storyboards = relationship(
        "Storyboard",
        back_populates="episode",
        cascade="all, delete-orphan",
        order_by="Storyboard.board_number",
    )
    shots = relationship(
        "Shot",
        back_populates="episode",
        cascade="all, delete-orphan",
        order_by="Shot.shot_number",
    )


class Storyboard(Base):
    __tablename__ = "storyboards"
    __table_args__ = (UniqueConstraint("episode_id", "board_number", name="uq_episode_board_number"),)
    id = Column(Integer, primary_key=True, index=True)
    episode_id = Column(Integer, ForeignKey("episodes.id"), nullable=False, index=True)
    board_number = Column(Integer, nullable=False)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    episode = relationship("Episode", back_populates="storyboards")
    shots = relationship("Shot", back_populates="storyboard", order_by="Shot.shot_number")


class Shot(Base):
    __tablename__ = "shots"
    # Ungrouped shots (storyboard_id NULL) are checked per episode in shot_service.
    __table_args__ = (UniqueConstraint("storyboard_id", "shot_number", name="uq_storyboard_shot_number"),)
    id = Column(Integer, primary_key=True, index=True)
    episode_id = Column(Integer, ForeignKey("episodes.id"), nullable=False, index=True)
    storyboard_id = Column(Integer, ForeignKey("storyboards.id"), nullable=True, index=True)

    shot_number = Column(Integer, nullable=False)
    shot_type = Column(String, nullable=True)
    shot_description = Column(Text, nullable=True)
    camera_movement = Column(String, nullable=True)
    dialogue_text = Column(Text, nullable=True)
    video_prompt = Column(Text, nullable=True)
    duration = Column(Float, nullable=True)

    # Cast: character_id is the primary participant, character_ids lists everyone in frame
    character_id = Column(Integer, ForeignKey("characters.id"), nullable=True)
    character_ids = Column(JSON, nullable=True)
    scene_id = Column(Integer, ForeignKey("scenes.id"), nullable=True)

    # Explicit reference image overrides
    character_image = Column(String, nullable=True)
    scene_image = Column(String, nullable=True)

    # Artifacts, written only by GenerationTracker
    tts_audio_path = Column(String, nullable=True)
    video_path = Column(String, nullable=True)
    lip_sync_video_path = Column(String, nullable=True)

    # Tracker-owned lifecycle
    status = Column(String, nullable=False, default=ShotStatus.NOT_STARTED.value, index=True)
    generation_kind = Column(String, nullable=True)
    generation_error = Column(Text, nullable=True)
    generation_updated_at = Column(String, nullable=True)

    created_at = Column(String, default=utcnow_iso)
    updated_at = Column(String, default=utcnow_iso, onupdate=utcnow_iso)

    episode = relationship("Episode", back_populates="shots")
    storyboard = relationship("Storyboard", back_populates="shots")
    character = relationship("Character")
    scene = relationship("Scene")
