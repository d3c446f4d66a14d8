from fastapi import APIRouter, Depends, HTTPException, File, Form, UploadFile
import logging
from sqlalchemy.orm import Session
from typing import List

from shortdrama.api.deps import (
    get_character_or_404,
    get_drama_service,
    get_episode_or_404,
    get_project_or_404,
    get_scene_or_404,
    get_shot_or_404,
    get_storyboard_or_404,
)
from shortdrama.db.session import get_db
from shortdrama.models.all_models import (
    Character,
    CharacterAngleImage,
    Episode,
    Project,
    Scene,
    SceneAngleImage,
    Shot,
    Storyboard,
)
from shortdrama.schemas.drama import (
    AngleImageOut,
    AngleImagesOut,
    CharacterCreate,
    CharacterOut,
    CharacterUpdate,
    EpisodeCreate,
    EpisodeOut,
    EpisodeUpdate,
    GenerateCharactersRequest,
    GenerateDialogueRequest,
    GenerateOutlineRequest,
    GenerateScenesRequest,
    GenerateShotsRequest,
    ProjectCreate,
    ProjectOut,
    ProjectSummaryOut,
    ProjectUpdate,
    SceneCreate,
    SceneOut,
    SceneUpdate,
)
from shortdrama.schemas.shot import (
    EpisodeDetailOut,
    ShotCreate,
    ShotOut,
    ShotUpdate,
    StoryboardCreate,
    StoryboardOut,
    StoryboardUpdate,
)
from shortdrama.services import shot_service
from shortdrama.services.drama_service import DramaGenerationService
from shortdrama.services.storage_service import (
    angle_summary,
    remove_uploaded_files,
    require_angle,
    save_angle_image,
)

router = APIRouter()
logger = logging.getLogger("api_logger")


def _project_summary(project: Project) -> ProjectSummaryOut:
    out = ProjectSummaryOut.model_validate(project)
    out.character_count = len(project.characters)
    out.scene_count = len(project.scenes)
    out.episode_count = len(project.episodes)
    return out


def _character_out(character: Character) -> CharacterOut:
    out = CharacterOut.model_validate(character)
    summary = angle_summary(character.angle_images)
    out.uploaded_count = summary["uploaded_count"]
    out.missing_angles = summary["missing_angles"]
    return out


def _scene_out(scene: Scene) -> SceneOut:
    out = SceneOut.model_validate(scene)
    summary = angle_summary(scene.angle_images)
    out.uploaded_count = summary["uploaded_count"]
    out.missing_angles = summary["missing_angles"]
    return out


def _angle_images_out(images, image=None, deleted_angle=None) -> AngleImagesOut:
    return AngleImagesOut(
        angle_images=[AngleImageOut.model_validate(img) for img in images],
        image=AngleImageOut.model_validate(image) if image is not None else None,
        deleted_angle=deleted_angle,
        **angle_summary(images),
    )


def _episode_detail(db: Session, episode: Episode) -> EpisodeDetailOut:
    detail = EpisodeDetailOut.model_validate(episode)
    detail.ungrouped_shots = [ShotOut.model_validate(s) for s in shot_service.ungrouped_shots(db, episode.id)]
    return detail


# --- Projects ---

@router.get("/projects", response_model=List[ProjectSummaryOut])
def read_projects(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    projects = (
        db.query(Project)
        .order_by(Project.created_at.desc(), Project.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [_project_summary(p) for p in projects]


@router.post("/projects", response_model=ProjectOut)
def create_project(project: ProjectCreate, db: Session = Depends(get_db)):
    db_project = Project(
        name=project.name,
        description=project.description,
        total_episodes=project.total_episodes,
        settings=project.settings or {},
    )
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    return db_project


@router.get("/projects/{project_id}", response_model=ProjectSummaryOut)
def read_project(project: Project = Depends(get_project_or_404)):
    return _project_summary(project)


@router.put("/projects/{project_id}", response_model=ProjectOut)
def update_project(
    project_in: ProjectUpdate,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
):
    data = project_in.model_dump(exclude_unset=True, mode="json")
    new_settings = data.pop("settings", None)
    for key, value in data.items():
        if value is not None:
            setattr(project, key, value)
    if new_settings is not None:
        # Merge so a partial settings payload keeps keys such as defaultVoiceId
        merged = dict(project.settings or {})
        merged.update(new_settings)
        project.settings = merged
    db.commit()
    db.refresh(project)
    return project


@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project: Project = Depends(get_project_or_404), db: Session = Depends(get_db)):
    project_id = project.id
    candidate_paths = []
    for character in project.characters:
        candidate_paths.extend(img.file_path for img in character.angle_images)
    for scene in project.scenes:
        candidate_paths.extend(img.file_path for img in scene.angle_images)

    db.delete(project)
    db.commit()
    # Generated artifacts are left to external storage management.
    remove_uploaded_files(candidate_paths)
    logger.info(f"Deleted project {project_id}")


# --- Characters ---

@router.get("/projects/{project_id}/characters", response_model=List[CharacterOut])
def read_characters(project: Project = Depends(get_project_or_404)):
    return [_character_out(c) for c in project.characters]


@router.post("/projects/{project_id}/characters", response_model=CharacterOut)
def create_character(
    character: CharacterCreate,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
):
    data = character.model_dump(mode="json")
    data["traits"] = data.get("traits") or {}
    db_character = Character(project_id=project.id, **data)
    db.add(db_character)
    db.commit()
    db.refresh(db_character)
    return _character_out(db_character)


@router.get("/characters/{character_id}", response_model=CharacterOut)
def read_character(character: Character = Depends(get_character_or_404)):
    return _character_out(character)


@router.put("/characters/{character_id}", response_model=CharacterOut)
def update_character(
    character_in: CharacterUpdate,
    character: Character = Depends(get_character_or_404),
    db: Session = Depends(get_db),
):
    data = character_in.model_dump(exclude_unset=True, mode="json")
    traits = data.pop("traits", None)
    for key, value in data.items():
        setattr(character, key, value)
    if traits is not None:
        merged = dict(character.traits or {})
        merged.update({k: v for k, v in traits.items() if v is not None})
        character.traits = merged
    db.commit()
    db.refresh(character)
    return _character_out(character)


@router.delete("/characters/{character_id}", status_code=204)
def delete_character(character: Character = Depends(get_character_or_404), db: Session = Depends(get_db)):
    paths = [img.file_path for img in character.angle_images]
    db.query(Shot).filter(Shot.character_id == character.id).update(
        {Shot.character_id: None}, synchronize_session=False
    )
    db.delete(character)
    db.commit()
    remove_uploaded_files(paths)


@router.get("/characters/{character_id}/images", response_model=AngleImagesOut)
def read_character_images(character: Character = Depends(get_character_or_404)):
    return _angle_images_out(character.angle_images)


@router.post("/characters/{character_id}/images", response_model=AngleImagesOut)
def upload_character_image(
    angle: str = Form(...),
    file: UploadFile = File(...),
    character: Character = Depends(get_character_or_404),
    db: Session = Depends(get_db),
):
    angle = require_angle(angle)
    file_path = save_angle_image(file, "characters", character.id, angle)

    image = (
        db.query(CharacterAngleImage)
        .filter(CharacterAngleImage.character_id == character.id, CharacterAngleImage.angle == angle)
        .first()
    )
    old_path = None
    if image:
        old_path = image.file_path
        image.file_path = file_path
    else:
        image = CharacterAngleImage(character_id=character.id, angle=angle, file_path=file_path)
        db.add(image)
    db.commit()
    db.refresh(image)
    db.refresh(character)
    if old_path and old_path != file_path:
        remove_uploaded_files([old_path])
    return _angle_images_out(character.angle_images, image=image)


@router.delete("/characters/{character_id}/images/{angle}", response_model=AngleImagesOut)
def delete_character_image(
    angle: str,
    character: Character = Depends(get_character_or_404),
    db: Session = Depends(get_db),
):
    angle = require_angle(angle)
    image = (
        db.query(CharacterAngleImage)
        .filter(CharacterAngleImage.character_id == character.id, CharacterAngleImage.angle == angle)
        .first()
    )
    if image:
        path = image.file_path
        db.delete(image)
        db.commit()
        db.refresh(character)
        remove_uploaded_files([path])
    return _angle_images_out(character.angle_images, deleted_angle=angle)


# --- Scenes ---

@router.get("/projects/{project_id}/scenes", response_model=List[SceneOut])
def read_scenes(project: Project = Depends(get_project_or_404)):
    return [_scene_out(s) for s in project.scenes]


@router.post("/projects/{project_id}/scenes", response_model=SceneOut)
def create_scene(
    scene: SceneCreate,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
):
    db_scene = Scene(project_id=project.id, **scene.model_dump(mode="json"))
    db.add(db_scene)
    db.commit()
    db.refresh(db_scene)
    return _scene_out(db_scene)


@router.get("/scenes/{scene_id}", response_model=SceneOut)
def read_scene(scene: Scene = Depends(get_scene_or_404)):
    return _scene_out(scene)


@router.put("/scenes/{scene_id}", response_model=SceneOut)
def update_scene(
    scene_in: SceneUpdate,
    scene: Scene = Depends(get_scene_or_404),
    db: Session = Depends(get_db),
):
    for key, value in scene_in.model_dump(exclude_unset=True, mode="json").items():
        setattr(scene, key, value)
    db.commit()
    db.refresh(scene)
    return _scene_out(scene)


@router.delete("/scenes/{scene_id}", status_code=204)
def delete_scene(scene: Scene = Depends(get_scene_or_404), db: Session = Depends(get_db)):
    paths = [img.file_path for img in scene.angle_images]
    db.query(Shot).filter(Shot.scene_id == scene.id).update({Shot.scene_id: None}, synchronize_session=False)
    db.delete(scene)
    db.commit()
    remove_uploaded_files(paths)


@router.get("/scenes/{scene_id}/images", response_model=AngleImagesOut)
def read_scene_images(scene: Scene = Depends(get_scene_or_404)):
    return _angle_images_out(scene.angle_images)


@router.post("/scenes/{scene_id}/images", response_model=AngleImagesOut)
def upload_scene_image(
    angle: str = Form(...),
    file: UploadFile = File(...),
    scene: Scene = Depends(get_scene_or_404),
    db: Session = Depends(get_db),
):
    angle = require_angle(angle)
    file_path = save_angle_image(file, "scenes", scene.id, angle)

    image = (
        db.query(SceneAngleImage)
        .filter(SceneAngleImage.scene_id == scene.id, SceneAngleImage.angle == angle)
        .first()
    )
    old_path = None
    if image:
        old_path = image.file_path
        image.file_path = file_path
    else:
        image = SceneAngleImage(scene_id=scene.id, angle=angle, file_path=file_path)
        db.add(image)
    db.commit()
    db.refresh(image)
    db.refresh(scene)
    if old_path and old_path != file_path:
        remove_uploaded_files([old_path])
    return _angle_images_out(scene.angle_images, image=image)


@router.delete("/scenes/{scene_id}/images/{angle}", response_model=AngleImagesOut)
def delete_scene_image(
    angle: str,
    scene: Scene = Depends(get_scene_or_404),
    db: Session = Depends(get_db),
):
    angle = require_angle(angle)
    image = (
        db.query(SceneAngleImage)
        .filter(SceneAngleImage.scene_id == scene.id, SceneAngleImage.angle == angle)
        .first()
    )
    if image:
        path = image.file_path
        db.delete(image)
        db.commit()
        db.refresh(scene)
        remove_uploaded_files([path])
    return _angle_images_out(scene.angle_images, deleted_angle=angle)


# --- Episodes ---

@router.get("/projects/{project_id}/episodes", response_model=List[EpisodeOut])
def read_episodes(project: Project = Depends(get_project_or_404)):
    return project.episodes


@router.post("/projects/{project_id}/episodes", response_model=EpisodeOut)
def create_episode(
    episode: EpisodeCreate,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
):
    exists = (
        db.query(Episode.id)
        .filter(Episode.project_id == project.id, Episode.episode_number == episode.episode_number)
        .first()
    )
    if exists:
        raise HTTPException(status_code=400, detail=f"Episode {episode.episode_number} already exists in this project")

    db_episode = Episode(project_id=project.id, **episode.model_dump())
    db.add(db_episode)
    db.commit()
    db.refresh(db_episode)
    return db_episode


@router.get("/episodes/{episode_id}", response_model=EpisodeDetailOut)
def read_episode(episode: Episode = Depends(get_episode_or_404), db: Session = Depends(get_db)):
    return _episode_detail(db, episode)


@router.put("/episodes/{episode_id}", response_model=EpisodeOut)
def update_episode(
    episode_in: EpisodeUpdate,
    episode: Episode = Depends(get_episode_or_404),
    db: Session = Depends(get_db),
):
    for key, value in episode_in.model_dump(exclude_unset=True, mode="json").items():
        setattr(episode, key, value)
    db.commit()
    db.refresh(episode)
    return episode


@router.delete("/episodes/{episode_id}", status_code=204)
def delete_episode(episode: Episode = Depends(get_episode_or_404), db: Session = Depends(get_db)):
    db.delete(episode)
    db.commit()


# --- Storyboards ---

@router.get("/episodes/{episode_id}/storyboards", response_model=List[StoryboardOut])
def read_storyboards(episode: Episode = Depends(get_episode_or_404)):
    return episode.storyboards


@router.post("/episodes/{episode_id}/storyboards", response_model=StoryboardOut)
def create_storyboard(
    storyboard: StoryboardCreate,
    episode: Episode = Depends(get_episode_or_404),
    db: Session = Depends(get_db),
):
    return shot_service.create_storyboard(db, episode, storyboard)


@router.get("/storyboards/{storyboard_id}", response_model=StoryboardOut)
def read_storyboard(storyboard: Storyboard = Depends(get_storyboard_or_404)):
    return storyboard


@router.put("/storyboards/{storyboard_id}", response_model=StoryboardOut)
def update_storyboard(
    storyboard_in: StoryboardUpdate,
    storyboard: Storyboard = Depends(get_storyboard_or_404),
    db: Session = Depends(get_db),
):
    return shot_service.update_storyboard(db, storyboard, storyboard_in)


@router.delete("/storyboards/{storyboard_id}", status_code=204)
def delete_storyboard(storyboard: Storyboard = Depends(get_storyboard_or_404), db: Session = Depends(get_db)):
    shot_service.delete_storyboard(db, storyboard)


# --- Shots ---

@router.get("/episodes/{episode_id}/shots", response_model=List[ShotOut])
def read_episode_shots(episode: Episode = Depends(get_episode_or_404), db: Session = Depends(get_db)):
    return (
        db.query(Shot)
        .filter(Shot.episode_id == episode.id)
        .order_by(Shot.storyboard_id.is_(None), Shot.storyboard_id.asc(), Shot.shot_number.asc())
        .all()
    )


@router.post("/episodes/{episode_id}/shots", response_model=ShotOut)
def create_episode_shot(
    shot: ShotCreate,
    auto_group: bool = False,
    episode: Episode = Depends(get_episode_or_404),
    db: Session = Depends(get_db),
):
    """Create a shot in the episode.

    With ``auto_group=false`` (default) the shot is ungrouped and its number must be
    unique among the episode's ungrouped shots. With ``auto_group=true`` it goes
    into the storyboard numbered like the shot, created on demand; a number already
    used in that storyboard is rejected with 400.
    """
    return shot_service.create_shot(db, episode, shot, auto_group=auto_group)


@router.post("/storyboards/{storyboard_id}/shots", response_model=ShotOut)
def create_storyboard_shot(
    shot: ShotCreate,
    storyboard: Storyboard = Depends(get_storyboard_or_404),
    db: Session = Depends(get_db),
):
    return shot_service.create_shot(db, storyboard.episode, shot, storyboard_id=storyboard.id)


@router.get("/shots/{shot_id}", response_model=ShotOut)
def read_shot(shot: Shot = Depends(get_shot_or_404)):
    return shot


@router.put("/shots/{shot_id}", response_model=ShotOut)
def update_shot(
    shot_in: ShotUpdate,
    shot: Shot = Depends(get_shot_or_404),
    db: Session = Depends(get_db),
):
    return shot_service.update_shot(db, shot, shot_in)


@router.delete("/shots/{shot_id}", status_code=204)
def delete_shot(shot: Shot = Depends(get_shot_or_404), db: Session = Depends(get_db)):
    db.delete(shot)
    db.commit()


# --- AI text generation ---

@router.post("/projects/{project_id}/generate/characters", response_model=List[CharacterOut])
async def generate_characters(
    request: GenerateCharactersRequest,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
    drama_service: DramaGenerationService = Depends(get_drama_service),
):
    characters = await drama_service.generate_characters(db, project, request.description, request.provider)
    return [_character_out(c) for c in characters]


@router.post("/projects/{project_id}/generate/scenes", response_model=List[SceneOut])
async def generate_scenes(
    request: GenerateScenesRequest,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
    drama_service: DramaGenerationService = Depends(get_drama_service),
):
    scenes = await drama_service.generate_scenes(db, project, request.description, request.provider)
    return [_scene_out(s) for s in scenes]


@router.post("/projects/{project_id}/generate/outline", response_model=List[EpisodeOut])
async def generate_outline(
    request: GenerateOutlineRequest,
    project: Project = Depends(get_project_or_404),
    db: Session = Depends(get_db),
    drama_service: DramaGenerationService = Depends(get_drama_service),
):
    return await drama_service.generate_outline(
        db, project, request.description, request.total_episodes, request.provider
    )


@router.post("/episodes/{episode_id}/generate/dialogue", response_model=EpisodeOut)
async def generate_dialogue(
    request: GenerateDialogueRequest,
    episode: Episode = Depends(get_episode_or_404),
    db: Session = Depends(get_db),
    drama_service: DramaGenerationService = Depends(get_drama_service),
):
    return await drama_service.generate_dialogue(db, episode, request.outline, request.scene_id, request.provider)


@router.post("/episodes/{episode_id}/generate/shots", response_model=List[ShotOut])
async def generate_shots(
    request: GenerateShotsRequest,
    episode: Episode = Depends(get_episode_or_404),
    db: Session = Depends(get_db),
    drama_service: DramaGenerationService = Depends(get_drama_service),
):
    return await drama_service.generate_shots(db, episode, request.dialogue_text, request.provider)
