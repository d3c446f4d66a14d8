from fastapi import APIRouter, Depends
import logging

from shortdrama.api.deps import get_text_service
from shortdrama.core.config import settings
from shortdrama.core.errors import ProviderFailure
from shortdrama.schemas.settings import ProviderSettingOut, ProviderSettingsOut
from shortdrama.services.llm_service import TextGenerationService

router = APIRouter()
logger = logging.getLogger("settings_api")


def _mask_api_key(api_key: str) -> str:
    if not api_key:
        return ""
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}***{api_key[-4:]}"


@router.get("/settings/providers", response_model=ProviderSettingsOut)
def read_provider_settings(text_service: TextGenerationService = Depends(get_text_service)):
    openai = settings.openai_config()
    anthropic = settings.anthropic_config()
    elevenlabs = settings.elevenlabs_config()
    comfyui = settings.comfyui_config()

    providers = [
        ProviderSettingOut(
            name="openai",
            category="Text",
            configured=openai.configured,
            base_url=openai.base_url,
            model=openai.model,
            api_key=_mask_api_key(openai.api_key),
        ),
        ProviderSettingOut(
            name="anthropic",
            category="Text",
            configured=anthropic.configured,
            base_url=anthropic.base_url,
            model=anthropic.model,
            api_key=_mask_api_key(anthropic.api_key),
        ),
        ProviderSettingOut(
            name="elevenlabs",
            category="Speech",
            configured=elevenlabs.configured,
            base_url=elevenlabs.base_url,
            model=elevenlabs.model,
            api_key=_mask_api_key(elevenlabs.api_key),
        ),
        ProviderSettingOut(
            name="comfyui",
            category="Video",
            configured=bool(comfyui.url),
            base_url=comfyui.url,
        ),
    ]

    try:
        active = text_service.select_provider().name
    except ProviderFailure:
        active = None

    return ProviderSettingsOut(
        providers=providers,
        text_provider_precedence=list(text_service.policy.precedence),
        active_text_provider=active,
    )
