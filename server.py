"""FastAPI front end for relaytube.

This service exposes:
- GET /api/info     : returns metadata for a provided URL using yt-dlp
- GET /api/download : redirects to, proxies, or remuxes the selected format
- GET /api/password : tells the client to ask the user for a video password

Run with:
    uvicorn server:app --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import logging
import os
import subprocess
from typing import Any, Dict, Iterator, Optional
from urllib.parse import urlencode

from yt_dlp.version import __version__ as yt_dlp_version
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from relaytube import __version__
from relaytube.config import Settings
from relaytube.controller import DispatchController, Streamed
from relaytube.errors import DispatchError, PasswordRequiredError
from relaytube.models import MediaInfo, Redirect

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("relaytube.server")

settings = Settings.from_env()
controller = DispatchController(settings)

app = FastAPI(title="relaytube", version=__version__)

# Allow the frontend to connect from any origin during development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def password_form_url(url: str) -> str:
    return "/api/password?" + urlencode({"url": url})


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if isinstance(exc, PasswordRequiredError) and request.url.path == "/api/download":
        url = request.query_params.get("url", "")
        return RedirectResponse(password_form_url(url), status_code=303)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def media_info_view(info: MediaInfo) -> Dict[str, Any]:
    view: Dict[str, Any] = {
        "id": info.id,
        "title": info.title,
        "protocol": info.protocol.value,
        "webpage_url": info.webpage_url,
        "formats": [
            {
                "format_id": f.id,
                "ext": f.ext,
                "protocol": f.protocol.value,
                "bitrate": f.bitrate,
                "audio_only": f.is_audio_only,
                "video_only": f.is_video_only,
            }
            for f in info.formats
        ],
    }
    if info.entries is not None:
        view["entries"] = [{"title": e.title, "url": e.webpage_url} for e in info.entries]
    return view


@app.get("/")
async def root() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/health")
def healthcheck() -> Dict[str, Any]:
    """Return service readiness and tool versions."""
    ffmpeg_version = None
    try:
        proc = subprocess.run([settings.ffmpeg_path, "-version"], capture_output=True, text=True, timeout=2)
        if proc.returncode == 0:
            ffmpeg_version = proc.stdout.splitlines()[0]
    except FileNotFoundError:
        ffmpeg_version = None
    except (OSError, subprocess.SubprocessError):
        ffmpeg_version = "ffmpeg check failed"

    return {
        "status": "ok",
        "yt_dlp": yt_dlp_version,
        "ffmpeg": ffmpeg_version or "missing",
        "stream": settings.stream,
        "remux": settings.remux,
        "remux_format": settings.remux_container,
    }


@app.get("/api/info")
def fetch_info(
    url: str = Query(..., description="Video or playlist page URL"),
    password: Optional[str] = Query(None, description="Video password, if the site asks for one"),
) -> Dict[str, Any]:
    """Return metadata for the provided URL using yt-dlp."""
    return media_info_view(controller.client.resolve(url, password))


@app.get("/api/password")
async def password_form(url: str = Query("", description="URL that needs a password")) -> Dict[str, Any]:
    return {
        "password_required": True,
        "url": url,
        "fields": ["url", "password"],
        "action": "/api/download",
    }


def relay(outcome: Streamed, url: str) -> Iterator[bytes]:
    try:
        yield from outcome
    except DispatchError as exc:
        # Headers are gone already; all we can do is cut the stream and log.
        logger.error(
            "stream for %s aborted after %d bytes: %s",
            url,
            outcome.body.bytes_written,
            exc.message,
        )
        raise
    finally:
        outcome.close()


@app.get("/api/download")
def download(
    request: Request,
    url: Optional[str] = Query(None, description="Video page URL"),
    format: Optional[str] = Query(None, description="Format id, best/worst alias, or video+audio pair"),
    password: Optional[str] = Query(None, description="Video password"),
    stream: Optional[bool] = Query(None, description="Ask for streaming when STREAM=ask"),
):
    """
    Deliver the selected format.

    - Without streaming the client is redirected to the direct media URL
    - With streaming the bytes are relayed (or remuxed by ffmpeg) as they arrive
    """
    if not url:
        return RedirectResponse("/", status_code=302)

    outcome = controller.dispatch(
        url,
        format,
        password=password,
        stream=stream,
        range_header=request.headers.get("range"),
    )
    if isinstance(outcome, Redirect):
        return RedirectResponse(outcome.url, status_code=302)

    headers = {
        "Content-Disposition": f'attachment; filename="{outcome.filename}"',
        **outcome.headers,
    }
    return StreamingResponse(
        relay(outcome, url),
        status_code=outcome.status_code,
        media_type=outcome.media_type,
        headers=headers,
        background=BackgroundTask(outcome.close),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
