import asyncio
import json
import logging
from typing import Optional, Dict, Any

from videoconv.config import settings

logger = logging.getLogger(__name__)


class MediaFileInfo:
    def __init__(self, data: Dict[str, Any]):
        self.raw = data
        self.format = data.get("format", {})
        self.streams = data.get("streams", [])

    @property
    def duration(self) -> float:
        try:
            return float(self.format.get("duration", 0))
        except (TypeError, ValueError):
            return 0.0

    @property
    def video_streams(self):
        return [s for s in self.streams if s.get("codec_type") == "video"]

    @property
    def audio_streams(self):
        return [s for s in self.streams if s.get("codec_type") == "audio"]

    @property
    def video_codec(self) -> Optional[str]:
        vs = self.video_streams
        return vs[0].get("codec_name") if vs else None


async def probe_file(file_path: str, ffprobe_path: Optional[str] = None) -> Optional[MediaFileInfo]:
    try:
        cmd = [
            ffprobe_path or settings.FFPROBE_PATH,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            file_path,
        ]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            logger.error(f"FFprobe failed: {stderr.decode(errors='replace')}")
            return None

        data = json.loads(stdout.decode())
        return MediaFileInfo(data)
    except Exception as e:
        logger.error(f"FFprobe error: {e}")
        return None
