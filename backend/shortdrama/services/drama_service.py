import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from shortdrama.core.errors import MissingInput, ProviderFailure
from shortdrama.core.prompts.templates import (
    SCREENWRITER_SYSTEM_PROMPT,
    CHARACTERS_PROMPT_TEMPLATE,
    SCENES_PROMPT_TEMPLATE,
    OUTLINE_PROMPT_TEMPLATE,
    DIALOGUE_PROMPT_TEMPLATE,
    SHOTS_PROMPT_TEMPLATE,
)
from shortdrama.models.all_models import (
    Character,
    Episode,
    EpisodeStatus,
    Project,
    Scene,
    Shot,
    ShotType,
    TimeOfDay,
)
from shortdrama.services.llm_service import TextGenerationService, extract_json_array
from shortdrama.services.shot_service import next_free_shot_number

logger = logging.getLogger("drama_service")

TIME_OF_DAY_ALIASES = {
    "早晨": TimeOfDay.MORNING,
    "早上": TimeOfDay.MORNING,
    "上午": TimeOfDay.MORNING,
    "下午": TimeOfDay.AFTERNOON,
    "傍晚": TimeOfDay.EVENING,
    "夜晚": TimeOfDay.NIGHT,
    "晚上": TimeOfDay.NIGHT,
    "深夜": TimeOfDay.NIGHT,
    "黎明": TimeOfDay.DAWN,
    "黄昏": TimeOfDay.DUSK,
}

SHOT_TYPE_ALIASES = {
    "极远景": ShotType.EXTREME_LONG,
    "远景": ShotType.LONG,
    "全景": ShotType.FULL,
    "中远景": ShotType.MEDIUM_LONG,
    "中景": ShotType.MEDIUM,
    "中近景": ShotType.MEDIUM_CLOSE,
    "近景": ShotType.CLOSE_UP,
    "特写": ShotType.EXTREME_CLOSE_UP,
    "主观镜头": ShotType.POV,
    "双人镜头": ShotType.TWO_SHOT,
    "wide_shot": ShotType.LONG,
    "medium_shot": ShotType.MEDIUM,
    "medium_close_up": ShotType.MEDIUM_CLOSE,
}


def _pick(item: Dict[str, Any], *keys: str) -> Optional[str]:
    """First non-blank value among ``keys``; models answer with English or Chinese field names."""
    for key in keys:
        value = item.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def normalize_time_of_day(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    key = value.strip()
    if key in TIME_OF_DAY_ALIASES:
        return TIME_OF_DAY_ALIASES[key].value
    try:
        return TimeOfDay(key.lower()).value
    except ValueError:
        return None


def normalize_shot_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    key = value.strip()
    if key in SHOT_TYPE_ALIASES:
        return SHOT_TYPE_ALIASES[key].value
    lowered = key.lower().replace("-", "_").replace(" ", "_")
    if lowered in SHOT_TYPE_ALIASES:
        return SHOT_TYPE_ALIASES[lowered].value
    try:
        return ShotType(lowered).value
    except ValueError:
        return None


def _only_objects(items: List[Any]) -> List[Dict[str, Any]]:
    return [item for item in items if isinstance(item, dict)]


def _characters_brief(characters: List[Character]) -> str:
    if not characters:
        return "（暂无）"
    return "\n".join(f"- {c.name}：{c.description or ''}" for c in characters)


def _scenes_brief(scenes: List[Scene]) -> str:
    if not scenes:
        return "（暂无）"
    return "\n".join(f"- {s.name}：{s.location or ''} {s.description or ''}".rstrip() for s in scenes)


def _match_by_name(rows: List[Any], name: Optional[str]):
    if not name:
        return None
    for row in rows:
        if row.name and (name in row.name or row.name in name):
            return row
    return None


class DramaGenerationService:
    """Turns text-provider output into characters, scenes, episodes, dialogue and shots."""

    def __init__(self, text_service: TextGenerationService):
        self.text_service = text_service

    async def _generate_array(self, prompt: str, provider: Optional[str]) -> List[Dict[str, Any]]:
        raw = await self.text_service.generate(prompt, system_prompt=SCREENWRITER_SYSTEM_PROMPT, provider=provider)
        items = _only_objects(extract_json_array(raw))
        if not items:
            raise ProviderFailure("Model returned an empty list")
        return items

    def _project_description(self, project: Project, override: Optional[str]) -> str:
        description = (override or project.description or "").strip()
        if not description:
            raise MissingInput("A project description is required for AI generation")
        return description

    async def generate_characters(self, db: Session, project: Project, description: Optional[str] = None, provider: Optional[str] = None) -> List[Character]:
        prompt = CHARACTERS_PROMPT_TEMPLATE.format(
            description=self._project_description(project, description),
            total_episodes=project.total_episodes or 1,
        )
        items = await self._generate_array(prompt, provider)

        created = []
        for item in items:
            name = _pick(item, "name", "姓名")
            if not name:
                continue
            character = Character(
                project_id=project.id,
                name=name,
                description=_pick(item, "background", "角色背景", "description"),
                traits={
                    "age": _pick(item, "age", "年龄"),
                    "personality": _pick(item, "personality", "性格特点"),
                    "appearance": _pick(item, "appearance", "外貌描述"),
                },
            )
            db.add(character)
            created.append(character)
        if not created:
            raise ProviderFailure("Model output contained no usable characters")
        db.commit()
        for character in created:
            db.refresh(character)
        logger.info(f"[drama] Generated {len(created)} characters for project {project.id}")
        return created

    async def generate_scenes(self, db: Session, project: Project, description: Optional[str] = None, provider: Optional[str] = None) -> List[Scene]:
        prompt = SCENES_PROMPT_TEMPLATE.format(
            description=self._project_description(project, description),
            total_episodes=project.total_episodes or 1,
        )
        items = await self._generate_array(prompt, provider)

        created = []
        for item in items:
            name = _pick(item, "name", "场景名称")
            if not name:
                continue
            scene = Scene(
                project_id=project.id,
                name=name,
                description=_pick(item, "atmosphere", "场景氛围", "description"),
                location=_pick(item, "location", "地点描述", "地点"),
                time_of_day=normalize_time_of_day(_pick(item, "timeOfDay", "time_of_day", "时间段")),
            )
            db.add(scene)
            created.append(scene)
        if not created:
            raise ProviderFailure("Model output contained no usable scenes")
        db.commit()
        for scene in created:
            db.refresh(scene)
        logger.info(f"[drama] Generated {len(created)} scenes for project {project.id}")
        return created

    async def generate_outline(
        self,
        db: Session,
        project: Project,
        description: Optional[str] = None,
        total_episodes: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> List[Episode]:
        total = total_episodes or project.total_episodes or 1
        prompt = OUTLINE_PROMPT_TEMPLATE.format(
            total_episodes=total,
            description=self._project_description(project, description),
            characters=_characters_brief(project.characters),
            scenes=_scenes_brief(project.scenes),
        )
        items = await self._generate_array(prompt, provider)

        existing = {ep.episode_number: ep for ep in project.episodes}
        touched = []
        for index, item in enumerate(items, start=1):
            try:
                number = int(_pick(item, "episode", "episode_number", "集数") or index)
            except ValueError:
                number = index
            if number < 1:
                continue
            episode = existing.get(number)
            if episode is None:
                episode = Episode(project_id=project.id, episode_number=number)
                db.add(episode)
                existing[number] = episode
            title = _pick(item, "title", "集标题", "标题")
            synopsis = _pick(item, "synopsis", "本集简介", "简介")
            if title:
                episode.title = title
            if synopsis:
                episode.synopsis = synopsis
            touched.append(episode)
        if not touched:
            raise ProviderFailure("Model output contained no usable episodes")
        db.commit()
        for episode in touched:
            db.refresh(episode)
        logger.info(f"[drama] Outline produced {len(touched)} episodes for project {project.id}")
        return sorted(touched, key=lambda ep: ep.episode_number)

    async def generate_dialogue(
        self,
        db: Session,
        episode: Episode,
        outline: Optional[str] = None,
        scene_id: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> Episode:
        story_outline = (outline or episode.synopsis or "").strip()
        if not story_outline:
            raise MissingInput("An outline or episode synopsis is required to generate dialogue")

        project = episode.project
        scene = None
        if scene_id:
            scene = db.query(Scene).filter(Scene.id == scene_id, Scene.project_id == project.id).first()
        prompt = DIALOGUE_PROMPT_TEMPLATE.format(
            outline=story_outline,
            characters=_characters_brief(project.characters),
            scene=f"{scene.name} {scene.location or ''}".strip() if scene else "（未指定）",
        )
        lines = await self._generate_array(prompt, provider)

        episode.dialogue_text = json.dumps(lines, ensure_ascii=False)
        episode.status = EpisodeStatus.SCRIPTED.value
        db.commit()
        db.refresh(episode)
        logger.info(f"[drama] Stored {len(lines)} dialogue lines on episode {episode.id}")
        return episode

    async def generate_shots(
        self,
        db: Session,
        episode: Episode,
        dialogue_text: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[Shot]:
        text = (dialogue_text or episode.dialogue_text or "").strip()
        if not text:
            raise MissingInput("Dialogue text is required to generate shots")

        project = episode.project
        characters = list(project.characters)
        scenes = list(project.scenes)
        prompt = SHOTS_PROMPT_TEMPLATE.format(
            dialogue_text=text,
            characters=_characters_brief(characters),
            scenes=_scenes_brief(scenes),
        )
        items = await self._generate_array(prompt, provider)

        number = next_free_shot_number(db, episode.id)
        created = []
        for item in items:
            description = _pick(item, "shotDescription", "shot_description", "分镜描述", "description")
            video_prompt = _pick(item, "videoPrompt", "video_prompt", "视频提示词")
            if not description and not video_prompt:
                continue
            character = _match_by_name(characters, _pick(item, "character", "出场角色"))
            scene = _match_by_name(scenes, _pick(item, "scene", "使用场景"))
            shot = Shot(
                episode_id=episode.id,
                shot_number=number,
                shot_type=normalize_shot_type(_pick(item, "shotType", "shot_type", "镜头类型")),
                shot_description=description,
                video_prompt=video_prompt,
                dialogue_text=_pick(item, "dialogue", "对话"),
                character_id=character.id if character else None,
                character_ids=[character.id] if character else None,
                scene_id=scene.id if scene else None,
            )
            db.add(shot)
            created.append(shot)
            number += 1
        if not created:
            raise ProviderFailure("Model output contained no usable shots")
        db.commit()
        for shot in created:
            db.refresh(shot)
        logger.info(f"[drama] Generated {len(created)} shots for episode {episode.id}")
        return created
