from pydantic import BaseModel
from typing import Optional, List


class ProviderSettingOut(BaseModel):
    name: str
    category: str  # Text, Speech, Video
    configured: bool
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key: str = ""  # masked


class ProviderSettingsOut(BaseModel):
    providers: List[ProviderSettingOut] = []
    text_provider_precedence: List[str] = []
    # First configured text provider in precedence order, if any
    active_text_provider: Optional[str] = None
