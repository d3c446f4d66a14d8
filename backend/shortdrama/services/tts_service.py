import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests

from shortdrama.core.config import ElevenLabsConfig

logger = logging.getLogger("tts_service")


class TTSService:
    """Text-to-speech through the ElevenLabs HTTP API.

    Results follow the media provider convention used across services:
    ``{"url": ..., "metadata": {...}}`` on success, ``{"error": ..., "details": ...}`` otherwise.
    """

    def __init__(self, config: ElevenLabsConfig, upload_dir: str, public_prefix: str = "/uploads"):
        self.config = config
        self.upload_dir = upload_dir
        self.public_prefix = public_prefix.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "xi-api-key": self.config.api_key,
        }

    def _output_dir(self, subdir: str) -> str:
        path = os.path.join(self.upload_dir, subdir)
        os.makedirs(path, exist_ok=True)
        return path

    async def generate_speech(self, text: str, voice_id: Optional[str] = None, subdir: str = "audio") -> Dict[str, Any]:
        if not self.config.configured:
            return {"error": "ElevenLabs API key not configured"}

        voice = voice_id or self.config.default_voice_id
        url = f"{self.config.base_url}/text-to-speech/{voice}"
        payload = {
            "text": text,
            "model_id": self.config.model,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
            },
        }

        def _post():
            return requests.post(url, json=payload, headers=self._headers(), timeout=self.config.timeout)

        try:
            resp = await asyncio.to_thread(_post)
        except requests.exceptions.Timeout as e:
            logger.warning(f"[tts] Timeout: {e}")
            return {"error": "Upstream request timeout", "details": str(e)}
        except requests.exceptions.RequestException as e:
            logger.warning(f"[tts] RequestException: {e}")
            return {"error": "Upstream request failed", "details": str(e)}

        if resp.status_code != 200:
            logger.warning(f"[tts] Error {resp.status_code}: {resp.text[:500]}")
            return {"error": f"ElevenLabs API error {resp.status_code}", "details": resp.text}

        audio = resp.content
        if not audio:
            return {"error": "ElevenLabs returned empty audio"}

        filename = f"tts_{int(time.time() * 1000)}.mp3"
        file_path = os.path.join(self._output_dir(subdir), filename)
        with open(file_path, "wb") as f:
            f.write(audio)

        relative_path = f"{self.public_prefix}/{subdir.strip('/')}/{filename}"
        logger.info(f"[tts] Saved {len(audio)} bytes voice={voice} -> {relative_path}")
        return {
            "url": relative_path,
            "metadata": {"provider": "elevenlabs", "voice_id": voice, "model": self.config.model, "bytes": len(audio)},
        }

    async def get_voices(self) -> List[Dict[str, Any]]:
        if not self.config.configured:
            return []

        def _get():
            return requests.get(
                f"{self.config.base_url}/voices",
                headers={"xi-api-key": self.config.api_key},
                timeout=30,
            )

        try:
            resp = await asyncio.to_thread(_get)
        except requests.exceptions.RequestException as e:
            logger.warning(f"[tts] Failed to fetch voices: {e}")
            return []

        if resp.status_code != 200:
            return []
        try:
            data = resp.json()
        except ValueError:
            return []
        return data.get("voices") or []
