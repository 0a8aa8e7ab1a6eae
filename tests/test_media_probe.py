import io
import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.services.media_probe import get_video_info, probe_duration
from app.services.staging import discard_staged, stage_upload


def ffprobe_result(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=["ffprobe"], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.mark.asyncio
async def test_get_video_info_parses_ffprobe_output(stage_file):
    staged = stage_file("clip.mp4", b"video", "video/mp4")
    output = json.dumps({
        "format": {"duration": "12.5", "format_name": "mov,mp4"},
        "streams": [
            {"codec_type": "audio", "codec_name": "aac"},
            {"codec_type": "video", "codec_name": "h264", "width": 1280, "height": 720},
        ],
    })

    with patch("app.services.media_probe.subprocess.run", return_value=ffprobe_result(stdout=output)) as run:
        info = await get_video_info(staged.path)

    assert info["status"] == "success"
    assert info["duration"] == 12.5
    assert (info["width"], info["height"]) == (1280, 720)
    assert info["video_codec"] == "h264"
    assert run.call_args.args[0][-1] == staged.path


@pytest.mark.asyncio
async def test_get_video_info_reports_missing_file(tmp_path):
    info = await get_video_info(str(tmp_path / "missing.mp4"))

    assert info["status"] == "error"
    assert "not found" in info["error_message"]


@pytest.mark.asyncio
async def test_probe_duration_uses_ffprobe(stage_file):
    staged = stage_file("clip.mp4", b"video", "video/mp4")
    output = json.dumps({"format": {"duration": "3.2"}, "streams": []})

    with patch("app.services.media_probe.subprocess.run", return_value=ffprobe_result(stdout=output)):
        assert await probe_duration(staged) == 3.2


@pytest.mark.asyncio
async def test_probe_duration_falls_back_to_file_size(stage_file):
    staged = stage_file("clip.mp4", b"x" * 2048, "video/mp4")

    with patch(
        "app.services.media_probe.subprocess.run",
        return_value=ffprobe_result(returncode=1, stderr="Invalid data found")
    ):
        assert await probe_duration(staged) == 2048.0

    with patch("app.services.media_probe.subprocess.run", side_effect=FileNotFoundError("ffprobe")):
        assert await probe_duration(staged) == 2048.0


@pytest.mark.asyncio
async def test_stage_upload_copies_file(tmp_path):
    upload = UploadFile(
        file=io.BytesIO(b"frame-data" * 1000),
        filename="Holiday.MP4",
        headers=Headers({"content-type": "video/mp4"}),
    )

    staged = await stage_upload(upload, directory=str(tmp_path / "staging"))

    assert Path(staged.path).is_absolute()
    assert staged.path.endswith(".mp4")
    assert Path(staged.path).read_bytes() == b"frame-data" * 1000
    assert staged.size == 10_000
    assert staged.filename == "Holiday.MP4"
    assert staged.content_type == "video/mp4"
    assert staged.extension == "mp4"


@pytest.mark.asyncio
async def test_discard_staged_ignores_missing_and_none(stage_file):
    present = stage_file("a.png", b"a", "image/png")
    gone = stage_file("b.png", b"b", "image/png")
    Path(gone.path).unlink()

    await discard_staged([present, None, gone])

    assert not Path(present.path).exists()
