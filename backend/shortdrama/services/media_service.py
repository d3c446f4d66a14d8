import asyncio
import logging
import os
import urllib.parse
import uuid
from typing import Any, Dict, List, Optional

import requests

from shortdrama.core.config import ComfyUIConfig

logger = logging.getLogger("media_service")

VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".gif")


class ComfyUIService:
    """Image-to-video and lip-sync generation on a ComfyUI server.

    Each public call builds a node graph in ComfyUI's API prompt format, queues it,
    then re-reads the history at a fixed interval until the prompt completes, errors
    or the attempt budget runs out. Results use the shared provider convention:
    ``{"url": ..., "metadata": {...}}`` or ``{"error": ..., "details": ...}``.
    """

    def __init__(self, config: ComfyUIConfig, upload_dir: str, public_prefix: str = "/uploads"):
        self.config = config
        self.upload_dir = upload_dir
        self.public_prefix = public_prefix.rstrip("/")
        self.client_id = uuid.uuid4().hex

    # --- Workflow builders ---

    def _output_node(self, source: List[Any], prefix: str) -> Dict[str, Any]:
        return {
            "class_type": "SaveVideo",
            "inputs": {"video": source, "filename_prefix": prefix, "format": "mp4"},
        }

    def build_image_to_video_workflow(
        self,
        image: str,
        prompt: str,
        reference_image: Optional[str] = None,
    ) -> Dict[str, Any]:
        workflow: Dict[str, Any] = {
            "1": {"class_type": "LoadImage", "inputs": {"image": image}},
        }
        generate_inputs: Dict[str, Any] = {"start_image": ["1", 0], "prompt": prompt or ""}
        if reference_image:
            workflow["2"] = {"class_type": "LoadImage", "inputs": {"image": reference_image}}
            generate_inputs["reference_image"] = ["2", 0]
        workflow["3"] = {"class_type": "WanImageToVideo", "inputs": generate_inputs}
        workflow["4"] = self._output_node(["3", 0], "i2v")
        return workflow

    def build_lip_sync_workflow(self, image: str, audio: str, prompt: str = "") -> Dict[str, Any]:
        return {
            "1": {"class_type": "LoadImage", "inputs": {"image": image}},
            "2": {"class_type": "LoadAudio", "inputs": {"audio": audio}},
            "3": {
                "class_type": "WanLipSync",
                "inputs": {"image": ["1", 0], "audio": ["2", 0], "prompt": prompt or ""},
            },
            "4": self._output_node(["3", 0], "lipsync"),
        }

    # --- HTTP plumbing ---

    def _local_path_for(self, ref: str) -> Optional[str]:
        if not ref or not ref.startswith(f"{self.public_prefix}/"):
            return None
        relative = ref[len(self.public_prefix) + 1:]
        path = os.path.join(self.upload_dir, relative)
        return path if os.path.isfile(path) else None

    async def _resolve_input(self, ref: str) -> str:
        """Upload a locally stored file to the ComfyUI input folder; other references pass through."""
        local_path = self._local_path_for(ref)
        if not local_path:
            return ref

        filename = os.path.basename(local_path)

        def _upload():
            with open(local_path, "rb") as f:
                return requests.post(
                    f"{self.config.url}/upload/image",
                    files={"image": (filename, f)},
                    data={"overwrite": "true"},
                    timeout=self.config.timeout,
                )

        resp = await asyncio.to_thread(_upload)
        if resp.status_code != 200:
            raise RuntimeError(f"Failed to upload {filename} to ComfyUI: {resp.status_code} {resp.text[:200]}")
        data = resp.json()
        name = data.get("name") or filename
        subfolder = data.get("subfolder") or ""
        return f"{subfolder}/{name}" if subfolder else name

    async def _queue_workflow(self, workflow: Dict[str, Any]) -> str:
        payload = {"prompt": workflow, "client_id": self.client_id}

        def _post():
            return requests.post(f"{self.config.url}/prompt", json=payload, timeout=self.config.timeout)

        resp = await asyncio.to_thread(_post)
        if resp.status_code != 200:
            raise RuntimeError(f"Failed to queue workflow: {resp.status_code} {resp.text[:500]}")
        prompt_id = resp.json().get("prompt_id")
        if not prompt_id:
            raise RuntimeError("ComfyUI did not return a prompt_id")
        return prompt_id

    async def _get_history(self, prompt_id: str) -> Optional[Dict[str, Any]]:
        def _get():
            return requests.get(f"{self.config.url}/history/{prompt_id}", timeout=30)

        try:
            resp = await asyncio.to_thread(_get)
        except requests.exceptions.Timeout:
            return None
        if resp.status_code != 200:
            return None
        return resp.json()

    async def wait_for_completion(self, prompt_id: str) -> Dict[str, Any]:
        for _ in range(self.config.max_poll_attempts):
            history = await self._get_history(prompt_id)
            entry = (history or {}).get(prompt_id)
            if entry:
                status = entry.get("status") or {}
                if status.get("completed"):
                    return entry
                if status.get("status_str") == "error" or status.get("errored"):
                    message = status.get("error_message") or status.get("messages") or "unknown error"
                    raise RuntimeError(f"Workflow failed: {message}")
            await asyncio.sleep(self.config.poll_interval_seconds)
        raise RuntimeError("Timeout waiting for workflow completion")

    def _view_url(self, item: Dict[str, Any]) -> str:
        query = urllib.parse.urlencode({
            "filename": item.get("filename", ""),
            "subfolder": item.get("subfolder") or "",
            "type": item.get("type") or "output",
        })
        return f"{self.config.url}/view?{query}"

    def get_output_images(self, result: Dict[str, Any]) -> List[str]:
        images: List[str] = []
        for node in (result.get("outputs") or {}).values():
            for img in node.get("images") or []:
                images.append(self._view_url(img))
        return images

    def get_output_video(self, result: Dict[str, Any]) -> Optional[str]:
        outputs = result.get("outputs") or {}
        for node in outputs.values():
            for key in ("videos", "gifs"):
                items = node.get(key) or []
                if items:
                    return self._view_url(items[0])
        for node in outputs.values():
            for img in node.get("images") or []:
                if str(img.get("filename", "")).lower().endswith(VIDEO_EXTENSIONS):
                    return self._view_url(img)
        return None

    def _download_and_save(self, url: str, subdir: str, filename_base: str) -> str:
        target_dir = os.path.join(self.upload_dir, subdir)
        os.makedirs(target_dir, exist_ok=True)
        try:
            response = requests.get(url, stream=True, timeout=600)
            if response.status_code != 200:
                logger.warning(f"Download failed {response.status_code}: {url}")
                return url
            filename = f"{filename_base}_{uuid.uuid4().hex[:8]}.mp4"
            with open(os.path.join(target_dir, filename), "wb") as f:
                for chunk in response.iter_content(4096):
                    f.write(chunk)
            return f"{self.public_prefix}/{subdir.strip('/')}/{filename}"
        except requests.exceptions.RequestException as e:
            logger.warning(f"Download failed: {e}")
            return url

    async def run_workflow(self, workflow: Dict[str, Any], subdir: str = "videos", filename_base: str = "gen") -> Dict[str, Any]:
        try:
            prompt_id = await self._queue_workflow(workflow)
            logger.info(f"[comfyui] Queued prompt {prompt_id}. Polling every {self.config.poll_interval_seconds}s")
            result = await self.wait_for_completion(prompt_id)
        except requests.exceptions.RequestException as e:
            logger.error(f"[comfyui] Request failed: {e}")
            return {"error": "Upstream request failed", "details": str(e)}
        except RuntimeError as e:
            logger.error(f"[comfyui] Workflow error: {e}")
            return {"error": str(e)}

        images = self.get_output_images(result)
        video = self.get_output_video(result)
        if not video:
            return {"error": "Workflow produced no video output", "details": str(result.get("outputs"))[:500]}

        local_url = await asyncio.to_thread(self._download_and_save, video, subdir, filename_base)
        return {
            "url": local_url,
            "metadata": {"provider": "comfyui", "prompt_id": prompt_id, "source_url": video, "images": images},
        }

    # --- Public calls ---

    async def image_to_video(self, image: str, prompt: str, reference_image: Optional[str] = None, subdir: str = "videos") -> Dict[str, Any]:
        try:
            image_name = await self._resolve_input(image)
            reference_name = await self._resolve_input(reference_image) if reference_image else None
        except (requests.exceptions.RequestException, RuntimeError) as e:
            return {"error": "Failed to prepare input image", "details": str(e)}
        workflow = self.build_image_to_video_workflow(image_name, prompt, reference_name)
        return await self.run_workflow(workflow, subdir=subdir, filename_base="i2v")

    async def lip_sync(self, image: str, audio: str, prompt: str = "", subdir: str = "videos") -> Dict[str, Any]:
        try:
            image_name = await self._resolve_input(image)
            audio_name = await self._resolve_input(audio)
        except (requests.exceptions.RequestException, RuntimeError) as e:
            return {"error": "Failed to prepare lip-sync inputs", "details": str(e)}
        workflow = self.build_lip_sync_workflow(image_name, audio_name, prompt)
        return await self.run_workflow(workflow, subdir=subdir, filename_base="lipsync")
