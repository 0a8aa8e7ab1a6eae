"""
Media inspection with ffprobe
"""

import asyncio
import json
import logging
import os
import subprocess
from typing import Any, Dict

from app.schemas.upload import StagedFile

logger = logging.getLogger(__name__)


async def get_video_info(video_path: str) -> Dict[str, Any]:
    """
    Get video file information using ffprobe.

    Args:
        video_path: Path to video file

    Returns:
        Dict with a status key and, on success, duration and stream details
    """
    try:
        if not os.path.exists(video_path):
            raise FileNotFoundError(f"Video file not found: {video_path}")

        ffprobe_cmd = [
            "ffprobe", "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            video_path
        ]

        result = await asyncio.to_thread(
            subprocess.run,
            ffprobe_cmd,
            capture_output=True,
            text=True,
            timeout=30
        )

        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed: {result.stderr}")

        probe_data = json.loads(result.stdout)
        format_info = probe_data.get("format", {})
        streams = probe_data.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), {})

        return {
            "status": "success",
            "duration": float(format_info.get("duration", 0)),
            "width": video_stream.get("width", 0),
            "height": video_stream.get("height", 0),
            "video_codec": video_stream.get("codec_name"),
            "format_name": format_info.get("format_name")
        }

    except (OSError, ValueError, RuntimeError, subprocess.SubprocessError) as e:
        return {
            "status": "error",
            "error_message": f"Failed to get video info: {str(e)}"
        }


async def probe_duration(video: StagedFile) -> float:
    """
    Duration of a staged video in seconds.

    Falls back to the file size when ffprobe is unavailable or cannot read
    the file; a failed probe never fails the upload.
    """
    info = await get_video_info(video.path)
    if info["status"] == "success" and info["duration"] > 0:
        return info["duration"]

    logger.warning(
        f"Could not read duration of {video.filename}, using file size instead: "
        f"{info.get('error_message', 'no duration reported')}"
    )
    return float(video.size)
