"""ffmpeg adapter: runs one transcode and turns its output into typed events."""
import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from videoconv.config import settings
from videoconv.models.job import Job
from videoconv.services.format_policy import Profile
from videoconv.utils.ffprobe import probe_file

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"time=\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
FPS_PATTERN = re.compile(r"fps=\s*([\d.]+)")

CANCELLED_MESSAGE = "Cancelled"


@dataclass(frozen=True)
class EngineProgress:
    percent: float
    media_time_seconds: float
    fps: float


@dataclass(frozen=True)
class EngineSucceeded:
    pass


@dataclass(frozen=True)
class EngineFailed:
    message: str


EngineEvent = Union[EngineProgress, EngineSucceeded, EngineFailed]


class FFmpegCommandBuilder:
    def __init__(self, profile: Profile, input_path: str, output_path: str,
                 ffmpeg_path: Optional[str] = None):
        self.profile = profile
        self.input_path = input_path
        self.output_path = output_path
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH

    def build(self) -> List[str]:
        parts = [self.ffmpeg_path, "-y", "-i", self.input_path]
        parts.extend(self._build_video_args())
        parts.extend(self._build_audio_args())
        parts.extend(["-f", self.profile.container, self.output_path])
        return parts

    def _build_video_args(self) -> List[str]:
        # No scale filter: frame dimensions pass through unchanged.
        return ["-c:v", self.profile.video_codec, *self.profile.video_flags]

    def _build_audio_args(self) -> List[str]:
        if self.profile.audio_codec is None:
            return ["-an"]
        return ["-c:a", self.profile.audio_codec]


def parse_progress_line(line: str, total_duration: float) -> Optional[EngineProgress]:
    """Parse an ffmpeg status line (``frame=... fps=... time=...``)."""
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    h, m, s = match.groups()
    current_seconds = int(h) * 3600 + int(m) * 60 + float(s)
    fps_match = FPS_PATTERN.search(line)
    fps = float(fps_match.group(1)) if fps_match else 0.0
    percent = 0.0
    if total_duration > 0:
        percent = min(100.0, (current_seconds / total_duration) * 100)
    return EngineProgress(percent=percent, media_time_seconds=current_seconds, fps=fps)


class EngineHandle:
    """Running transcode: an event queue ending in ``None`` plus a cancel hook."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.events: asyncio.Queue = asyncio.Queue()
        self.process: Optional[asyncio.subprocess.Process] = None
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False

    def cancel(self):
        self.cancelled = True
        proc = self.process
        if proc is not None and proc.returncode is None:
            logger.info(f"Job {self.job_id}: killing active process (pid={proc.pid})")
            try:
                proc.terminate()
            except ProcessLookupError:
                pass

    async def wait(self):
        if self.task is not None:
            await self.task


class TranscodeEngine:
    def __init__(self, ffmpeg_path: Optional[str] = None, ffprobe_path: Optional[str] = None):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH

    def start(self, job: Job, profile: Profile) -> EngineHandle:
        handle = EngineHandle(job.id)
        handle.task = asyncio.create_task(self._run(job, profile, handle))
        return handle

    async def _run(self, job: Job, profile: Profile, handle: EngineHandle) -> None:
        try:
            terminal = await self._transcode(job, profile, handle)
        except asyncio.CancelledError:
            handle.cancel()
            handle.events.put_nowait(EngineFailed(CANCELLED_MESSAGE))
            handle.events.put_nowait(None)
            raise
        except Exception as e:
            logger.error(f"Job {job.id}: engine error: {e}")
            terminal = EngineFailed(str(e) or e.__class__.__name__)
        if handle.cancelled:
            terminal = EngineFailed(CANCELLED_MESSAGE)
        handle.events.put_nowait(terminal)
        handle.events.put_nowait(None)

    async def _transcode(self, job: Job, profile: Profile, handle: EngineHandle) -> EngineEvent:
        info = await probe_file(job.input_path, self.ffprobe_path)
        total_duration = info.duration if info else 0.0
        if handle.cancelled:
            return EngineFailed(CANCELLED_MESSAGE)

        cmd = FFmpegCommandBuilder(profile, job.input_path, job.output_path, self.ffmpeg_path).build()
        logger.info(f"Job {job.id}: running {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return EngineFailed(f"ffmpeg executable not found: {self.ffmpeg_path}")
        except OSError as e:
            return EngineFailed(f"Cannot start ffmpeg: {e}")

        handle.process = process
        if handle.cancelled:
            handle.cancel()

        log_lines = await self._stream_progress(process, total_duration, handle)
        await process.wait()

        if handle.cancelled:
            return EngineFailed(CANCELLED_MESSAGE)
        if process.returncode != 0:
            message = log_lines[-1] if log_lines else f"ffmpeg exited with code {process.returncode}"
            return EngineFailed(message)
        try:
            if os.path.getsize(job.output_path) == 0:
                return EngineFailed("Output file is empty")
        except OSError:
            return EngineFailed("Output file was not produced")
        return EngineSucceeded()

    async def _stream_progress(self, process, total_duration: float,
                               handle: EngineHandle) -> List[str]:
        """Read ffmpeg stderr, emit progress events. Returns non-progress log lines.

        ffmpeg terminates status lines with \\r, not \\n, so split on both.
        """
        log_lines = []
        buffer = b""
        while True:
            chunk = await process.stderr.read(4096)
            if not chunk:
                break
            buffer += chunk
            while b"\r" in buffer or b"\n" in buffer:
                r_pos = buffer.find(b"\r")
                n_pos = buffer.find(b"\n")
                if r_pos == -1:
                    pos = n_pos
                elif n_pos == -1:
                    pos = r_pos
                else:
                    pos = min(r_pos, n_pos)

                line_bytes = buffer[:pos]
                if buffer[pos:pos + 2] == b"\r\n":
                    buffer = buffer[pos + 2:]
                else:
                    buffer = buffer[pos + 1:]

                self._handle_line(line_bytes, total_duration, handle, log_lines)

        if buffer:
            self._handle_line(buffer, total_duration, handle, log_lines)
        return log_lines

    @staticmethod
    def _handle_line(line_bytes: bytes, total_duration: float, handle: EngineHandle,
                     log_lines: List[str]) -> None:
        line_text = line_bytes.decode("utf-8", errors="replace").strip()
        if not line_text:
            return
        progress = parse_progress_line(line_text, total_duration)
        if progress is not None:
            handle.events.put_nowait(progress)
        else:
            log_lines.append(line_text)
            del log_lines[:-100]
