"""Authoring rules for storyboards and shots.

Shot numbers are unique inside their storyboard, or among the episode's
ungrouped shots when ``storyboard_id`` is empty. Collisions are rejected, never
renumbered. ``auto_group`` placement puts a shot into the storyboard whose
``board_number`` equals its ``shot_number``, creating it when missing.
"""
import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shortdrama.core.errors import InvalidRequest, NotFound
from shortdrama.models.all_models import Character, Episode, Scene, Shot, Storyboard
from shortdrama.schemas.shot import ShotCreate, ShotUpdate, StoryboardCreate, StoryboardUpdate

logger = logging.getLogger("shot_service")


def _scope_label(storyboard_id: Optional[int]) -> str:
    return f"storyboard {storyboard_id}" if storyboard_id else "the episode's ungrouped shots"


def ensure_shot_number_free(
    db: Session,
    episode_id: int,
    storyboard_id: Optional[int],
    shot_number: int,
    exclude_shot_id: Optional[int] = None,
) -> None:
    query = db.query(Shot.id).filter(Shot.shot_number == shot_number)
    if storyboard_id:
        query = query.filter(Shot.storyboard_id == storyboard_id)
    else:
        query = query.filter(Shot.episode_id == episode_id, Shot.storyboard_id.is_(None))
    if exclude_shot_id is not None:
        query = query.filter(Shot.id != exclude_shot_id)
    if query.first() is not None:
        raise InvalidRequest(f"Shot number {shot_number} already exists in {_scope_label(storyboard_id)}")


def next_free_shot_number(db: Session, episode_id: int) -> int:
    current = (
        db.query(func.max(Shot.shot_number))
        .filter(Shot.episode_id == episode_id, Shot.storyboard_id.is_(None))
        .scalar()
    )
    return (current or 0) + 1


def require_storyboard_in_episode(db: Session, episode_id: int, storyboard_id: int) -> Storyboard:
    storyboard = db.query(Storyboard).filter(Storyboard.id == storyboard_id).first()
    if storyboard is None:
        raise NotFound("Storyboard not found")
    if storyboard.episode_id != episode_id:
        raise InvalidRequest("Storyboard belongs to a different episode")
    return storyboard


def get_or_create_storyboard(db: Session, episode_id: int, board_number: int) -> Storyboard:
    storyboard = (
        db.query(Storyboard)
        .filter(Storyboard.episode_id == episode_id, Storyboard.board_number == board_number)
        .first()
    )
    if storyboard is not None:
        return storyboard
    storyboard = Storyboard(episode_id=episode_id, board_number=board_number, title=f"Storyboard {board_number}")
    db.add(storyboard)
    db.flush()
    logger.info(f"[shots] Auto-created storyboard {storyboard.id} (board {board_number}) in episode {episode_id}")
    return storyboard


def validate_cast(db: Session, project_id: int, data: dict) -> None:
    """Character and scene references must point at rows of the same project."""
    character_refs = list(data.get("character_ids") or [])
    if data.get("character_id"):
        character_refs.append(data["character_id"])
    if character_refs:
        found = {
            row[0]
            for row in db.query(Character.id).filter(
                Character.id.in_(set(character_refs)),
                Character.project_id == project_id,
            ).all()
        }
        unknown = sorted(set(character_refs) - found)
        if unknown:
            raise InvalidRequest(f"Unknown character id(s) for this project: {unknown}")

    scene_id = data.get("scene_id")
    if scene_id:
        scene = db.query(Scene.id).filter(Scene.id == scene_id, Scene.project_id == project_id).first()
        if scene is None:
            raise InvalidRequest(f"Unknown scene id for this project: {scene_id}")


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise InvalidRequest("Ordering number already in use", str(e.orig))


def create_shot(
    db: Session,
    episode: Episode,
    shot_in: ShotCreate,
    storyboard_id: Optional[int] = None,
    auto_group: bool = False,
) -> Shot:
    data = shot_in.model_dump(exclude_unset=True, mode="json")
    validate_cast(db, episode.project_id, data)

    if storyboard_id:
        require_storyboard_in_episode(db, episode.id, storyboard_id)
    elif auto_group:
        storyboard_id = get_or_create_storyboard(db, episode.id, shot_in.shot_number).id

    ensure_shot_number_free(db, episode.id, storyboard_id, shot_in.shot_number)

    db_shot = Shot(episode_id=episode.id, storyboard_id=storyboard_id, **data)
    db.add(db_shot)
    _commit(db)
    db.refresh(db_shot)
    logger.info(f"[shots] Created shot {db_shot.id} #{db_shot.shot_number} in {_scope_label(storyboard_id)} (episode {episode.id})")
    return db_shot


def update_shot(db: Session, db_shot: Shot, shot_in: ShotUpdate) -> Shot:
    data = shot_in.model_dump(exclude_unset=True, mode="json")
    project_id = db_shot.episode.project_id
    validate_cast(db, project_id, data)

    storyboard_id = data.get("storyboard_id", db_shot.storyboard_id)
    if "storyboard_id" in data and storyboard_id:
        require_storyboard_in_episode(db, db_shot.episode_id, storyboard_id)
    shot_number = data.get("shot_number") or db_shot.shot_number
    if storyboard_id != db_shot.storyboard_id or shot_number != db_shot.shot_number:
        ensure_shot_number_free(db, db_shot.episode_id, storyboard_id, shot_number, exclude_shot_id=db_shot.id)

    for key, value in data.items():
        if key == "shot_number" and value is None:
            continue
        setattr(db_shot, key, value)

    _commit(db)
    db.refresh(db_shot)
    return db_shot


def create_storyboard(db: Session, episode: Episode, storyboard_in: StoryboardCreate) -> Storyboard:
    exists = (
        db.query(Storyboard.id)
        .filter(Storyboard.episode_id == episode.id, Storyboard.board_number == storyboard_in.board_number)
        .first()
    )
    if exists is not None:
        raise InvalidRequest(f"Storyboard number {storyboard_in.board_number} already exists in this episode")
    storyboard = Storyboard(episode_id=episode.id, **storyboard_in.model_dump())
    db.add(storyboard)
    _commit(db)
    db.refresh(storyboard)
    return storyboard


def update_storyboard(db: Session, storyboard: Storyboard, storyboard_in: StoryboardUpdate) -> Storyboard:
    data = storyboard_in.model_dump(exclude_unset=True)
    board_number = data.get("board_number")
    if board_number and board_number != storyboard.board_number:
        exists = (
            db.query(Storyboard.id)
            .filter(
                Storyboard.episode_id == storyboard.episode_id,
                Storyboard.board_number == board_number,
                Storyboard.id != storyboard.id,
            )
            .first()
        )
        if exists is not None:
            raise InvalidRequest(f"Storyboard number {board_number} already exists in this episode")
    for key, value in data.items():
        if value is not None:
            setattr(storyboard, key, value)
    _commit(db)
    db.refresh(storyboard)
    return storyboard


def delete_storyboard(db: Session, storyboard: Storyboard) -> None:
    shot_count = db.query(func.count(Shot.id)).filter(Shot.storyboard_id == storyboard.id).scalar() or 0
    if shot_count:
        raise InvalidRequest(f"Storyboard still contains {shot_count} shot(s); move or delete them first")
    db.delete(storyboard)
    db.commit()


def ungrouped_shots(db: Session, episode_id: int) -> List[Shot]:
    return (
        db.query(Shot)
        .filter(Shot.episode_id == episode_id, Shot.storyboard_id.is_(None))
        .order_by(Shot.shot_number.asc())
        .all()
    )
