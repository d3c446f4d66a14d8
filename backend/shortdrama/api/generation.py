from fastapi import APIRouter, Depends, Request
import logging
from typing import Any, Dict, List, Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from shortdrama.api.deps import get_generation_tracker, get_tts_service
from shortdrama.core.config import settings
from shortdrama.models.all_models import GenerationKind
from shortdrama.schemas.shot import (
    GenerationInput,
    LipSyncGenerationRequest,
    ShotOut,
    ShotStatusOut,
    TTSGenerationRequest,
    VideoGenerationRequest,
)
from shortdrama.services.generation_service import GenerationTracker
from shortdrama.services.tts_service import TTSService

# Shared with main.py, which registers it on app.state for the RateLimitExceeded handler.
limiter = Limiter(key_func=get_remote_address)

router = APIRouter()
logger = logging.getLogger("generation_api")


@router.post("/generation/tts", response_model=ShotOut)
@limiter.limit(settings.RATE_LIMIT_GENERATION)
async def generate_tts(
    request: Request,
    req: TTSGenerationRequest,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    return await tracker.request_generation(
        req.shot_id,
        GenerationKind.SPEECH,
        GenerationInput(text=req.text, voice_id=req.voice_id),
    )


@router.post("/generation/video", response_model=ShotOut)
@limiter.limit(settings.RATE_LIMIT_GENERATION)
async def generate_video(
    request: Request,
    req: VideoGenerationRequest,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    return await tracker.request_generation(req.shot_id, GenerationKind.VIDEO, GenerationInput(prompt=req.prompt))


@router.post("/generation/lip-sync", response_model=ShotOut)
@limiter.limit(settings.RATE_LIMIT_GENERATION)
async def generate_lip_sync(
    request: Request,
    req: LipSyncGenerationRequest,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    return await tracker.request_generation(req.shot_id, GenerationKind.LIP_SYNC, GenerationInput(prompt=req.prompt))


@router.post("/shots/{shot_id}/generate/{kind}", response_model=ShotOut)
@limiter.limit(settings.RATE_LIMIT_GENERATION)
async def generate_for_shot(
    request: Request,
    shot_id: int,
    kind: str,
    gen_input: Optional[GenerationInput] = None,
    tracker: GenerationTracker = Depends(get_generation_tracker),
):
    # Unknown kinds surface as InvalidRequest (400) from the tracker.
    return await tracker.request_generation(shot_id, kind.replace("-", "_"), gen_input)


@router.get("/shots/{shot_id}/status", response_model=ShotStatusOut)
def read_shot_status(shot_id: int, tracker: GenerationTracker = Depends(get_generation_tracker)):
    return tracker.poll_status(shot_id)


@router.get("/generation/voices", response_model=List[Dict[str, Any]])
async def list_voices(tts_service: TTSService = Depends(get_tts_service)):
    return await tts_service.get_voices()
