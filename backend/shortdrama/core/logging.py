import logging
import time
import re
from typing import Optional
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Configure standard loggers to be less noisy
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.ERROR)
logging.getLogger("fastapi").setLevel(logging.WARNING)


class _SuppressUvicornAccessUploads(logging.Filter):
    _re = re.compile(r'"(GET|HEAD)\s+/uploads/[^\s]*\s+HTTP/')

    def filter(self, record: logging.LogRecord) -> bool:
        return self._re.search(record.getMessage()) is None


def configure_uvicorn_logging_noise_reduction() -> None:
    """Reduce meaningless uvicorn access log noise.

    Uvicorn may override logger levels via its own log_config after module import,
    so call this at app startup to ensure it takes effect.
    """
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.setLevel(logging.WARNING)

    if not any(isinstance(f, _SuppressUvicornAccessUploads) for f in access_logger.filters):
        access_logger.addFilter(_SuppressUvicornAccessUploads())

logger = logging.getLogger("functional_activity")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s'))
    logger.addHandler(handler)

# Map Regex Patterns to Functional Names
FUNCTION_MAP = [
    # Projects
    (r"GET /api/v1/projects/?$", "View Project List"),
    (r"POST /api/v1/projects/?$", "Create New Project"),
    (r"GET /api/v1/projects/\d+$", "View Project Details"),
    (r"PUT /api/v1/projects/\d+$", "Update Project"),
    (r"DELETE /api/v1/projects/\d+$", "Delete Project"),

    # Characters & Scenes
    (r"POST /api/v1/projects/\d+/characters$", "Create Character"),
    (r"POST /api/v1/projects/\d+/scenes$", "Create Scene"),
    (r"POST /api/v1/(characters|scenes)/\d+/images$", "Upload Angle Image"),
    (r"DELETE /api/v1/(characters|scenes)/\d+/images/\w+$", "Delete Angle Image"),

    # Episodes, Storyboards, Shots
    (r"POST /api/v1/projects/\d+/episodes$", "Create Episode"),
    (r"GET /api/v1/episodes/\d+$", "View Episode Details"),
    (r"POST /api/v1/episodes/\d+/storyboards$", "Create Storyboard"),
    (r"DELETE /api/v1/storyboards/\d+$", "Delete Storyboard"),
    (r"POST /api/v1/(episodes|storyboards)/\d+/shots$", "Create Shot"),
    (r"PUT /api/v1/shots/\d+$", "Update Shot"),
    (r"DELETE /api/v1/shots/\d+$", "Delete Shot"),

    # AI Text Generation
    (r"POST /api/v1/projects/\d+/generate/characters$", "Function: AI Character Generation"),
    (r"POST /api/v1/projects/\d+/generate/scenes$", "Function: AI Scene Generation"),
    (r"POST /api/v1/projects/\d+/generate/outline$", "Function: AI Outline Generation"),
    (r"POST /api/v1/episodes/\d+/generate/dialogue$", "Function: AI Dialogue Generation"),
    (r"POST /api/v1/episodes/\d+/generate/shots$", "Function: AI Shot Generation"),

    # Media Generation
    (r"POST /api/v1/generation/tts$", "Function: Speech Generation"),
    (r"POST /api/v1/generation/video$", "Function: Video Generation"),
    (r"POST /api/v1/generation/lip-sync$", "Function: Lip Sync Generation"),
    (r"POST /api/v1/shots/\d+/generate/\w+$", "Function: Shot Generation"),
    # (r"GET /api/v1/shots/\d+/status$", "Poll Shot Status"), # Removed to reduce log spam during polling

    # Settings
    (r"GET /api/v1/settings/providers$", "View Provider Settings"),
]

# Status polling is repeated at a fixed interval by clients; keep it out of the activity log.
POLLING_PATH_RE = re.compile(r"^/api/v1/shots/\d+/status$")


def get_function_name(method: str, path: str):
    key = f"{method} {path}"
    for pattern, name in FUNCTION_MAP:
        if re.search(pattern, key):
            return name
    return None


def _safe_int(value) -> Optional[int]:
    try:
        if value is None:
            return None
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _extract_first_int_by_regex(path: str, pattern: str) -> Optional[int]:
    m = re.search(pattern, path or "")
    if not m:
        return None
    return _safe_int(m.group(1))


def _resolve_project_id_for_logging(path: str, request: Request) -> Optional[int]:
    direct_project_id = _extract_first_int_by_regex(path, r"/projects/(\d+)")
    if direct_project_id:
        return direct_project_id

    return _safe_int(request.query_params.get("project_id"))


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # 1. Identify Function
        method = request.method
        path = request.url.path
        func_name = get_function_name(method, path)
        noise_prefixes = (
            "/uploads/",
            "/docs",
            "/redoc",
        )
        noise_exact = {
            "/",
            "/openapi.json",
            "/favicon.ico",
            "/healthz",
        }
        is_noise = (
            path in noise_exact
            or any(path.startswith(p) for p in noise_prefixes)
            or POLLING_PATH_RE.match(path) is not None
        )

        # 2. Extract Client Info
        client_host = request.client.host if request.client else "unknown"
        project_id = _resolve_project_id_for_logging(path, request)

        try:
            response = await call_next(request)
        except Exception as e:
            process_ms = int((time.time() - start_time) * 1000)
            if not is_noise:
                action = func_name or f"API Call: {method} {path}"
                logger.error(
                    f"API Result | ProjectID: {project_id} | "
                    f"Action: {action} | Method: {method} | Path: {path} | "
                    f"Status: EXCEPTION | IP: {client_host} | Time: {process_ms}ms | Error: {type(e).__name__}: {str(e)[:200]}"
                )
            raise

        process_ms = int((time.time() - start_time) * 1000)

        # 3. Log every API endpoint call with key access factors and result status.
        if not is_noise:
            action = func_name or f"API Call: {method} {path}"
            content_length = request.headers.get("content-length")
            size_part = f" | ReqBytes: {content_length}" if content_length else ""
            line = (
                f"API Result | ProjectID: {project_id} | "
                f"Action: {action} | Method: {method} | Path: {path} | "
                f"Status: {response.status_code} | IP: {client_host} | Time: {process_ms}ms{size_part}"
            )

            if 200 <= response.status_code < 400:
                logger.info(line)
            elif 400 <= response.status_code < 500:
                logger.warning(line)
            else:
                logger.error(line)

        # 4. Fallback for noise-path 5xxs (rare but useful)
        elif response.status_code >= 500:
            logger.error(
                f"System Error | ProjectID: {project_id} | "
                f"Path: {method} {path} | Status: {response.status_code} | "
                f"IP: {client_host} | Time: {process_ms}ms"
            )

        return response
