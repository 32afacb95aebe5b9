"""FFmpeg transcoding engine.

Spawns one non-blocking ffmpeg process per job and turns its
``-progress pipe:1`` output into an ordered stream of engine events.
"""

import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from transcoder.core.metrics import TRANSCODE_DURATION_SECONDS
from transcoder.modules.transcoding.errors import EngineFailure
from transcoder.modules.transcoding.models import JobStatus, TranscodeJob
from transcoder.modules.transcoding.schemas import parse_codec, parse_resolution

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


@dataclass
class FFmpegConfig:
    """Encoder parameters shared by every job."""
    preset: str = "slow"
    crf: int = 18
    video_bitrate: str = "10000k"
    threads: int = 2


@dataclass(frozen=True)
class EngineEvent:
    """One step of engine output. Terminal events carry COMPLETED or FAILED."""
    percent: float
    status: JobStatus = JobStatus.RUNNING
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class EngineHandle:
    """Owned handle to one running encoder process.

    The handle is consumed at most once: ``cancel`` kills the process the
    first time it is called and is a no-op afterwards or once the process
    has exited on its own.
    """

    def __init__(
        self,
        job_id: str,
        process: asyncio.subprocess.Process,
        duration: Optional[float],
    ):
        self.job_id = job_id
        self._process = process
        self._duration = duration
        self._started_at = time.monotonic()
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._canceled = False
        self._finished = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def canceled(self) -> bool:
        return self._canceled

    @property
    def finished(self) -> bool:
        return self._finished or self._process.returncode is not None

    async def _drain_stderr(self) -> None:
        assert self._process.stderr is not None
        async for raw in self._process.stderr:
            line = raw.decode("utf-8", errors="ignore").rstrip()
            if line:
                self._stderr_tail.append(line)

    def _percent_from(self, key: str, value: str) -> Optional[float]:
        if not self._duration or key not in ("out_time_us", "out_time_ms"):
            return None
        try:
            # ffmpeg reports both keys in microseconds
            seconds = int(value) / 1_000_000
        except ValueError:
            return None
        return max(0.0, min(100.0, seconds / self._duration * 100))

    async def events(self) -> AsyncIterator[EngineEvent]:
        """Yield progress events, then exactly one terminal event.

        Percent values are non-decreasing. After ``cancel`` no terminal
        event is produced; the stream simply ends.
        """
        assert self._process.stdout is not None
        percent = 0.0
        async for raw in self._process.stdout:
            key, _, value = raw.decode("utf-8", errors="ignore").strip().partition("=")
            current = self._percent_from(key, value)
            if current is not None and current > percent:
                percent = current
                yield EngineEvent(percent=percent)

        returncode = await self._process.wait()
        await self._stderr_task
        self._finished = True
        TRANSCODE_DURATION_SECONDS.observe(time.monotonic() - self._started_at)

        if self._canceled:
            return
        if returncode == 0:
            yield EngineEvent(percent=100.0, status=JobStatus.COMPLETED)
        else:
            detail = "\n".join(self._stderr_tail) or f"ffmpeg exited with code {returncode}"
            yield EngineEvent(percent=percent, status=JobStatus.FAILED, error=detail)

    def cancel(self) -> bool:
        """Kill the encoder with SIGKILL.

        Returns:
            True if this call terminated the process
        """
        if self._canceled or self.finished:
            return False
        self._canceled = True
        try:
            self._process.kill()
        except ProcessLookupError:
            return False
        logger.info("Killed ffmpeg process", extra={"job_id": self.job_id, "pid": self.pid})
        return True

    async def wait(self) -> int:
        """Wait for the OS process to exit."""
        return await self._process.wait()


class FFmpegTranscoder:
    """FFmpeg-based implementation of the transcoding engine."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        config: Optional[FFmpegConfig] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            config: Encoder parameters
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.config = config or FFmpegConfig()

    async def get_video_info(self, input_path: str) -> dict:
        """Get video information using ffprobe.

        Returns:
            Parsed ffprobe output, or ``{"error": ...}`` if probing failed
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            input_path,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            stdout, _ = await process.communicate()
            if process.returncode != 0:
                return {"error": f"ffprobe exited with code {process.returncode}"}
            return json.loads(stdout)
        except (OSError, json.JSONDecodeError) as e:
            return {"error": str(e)}

    async def probe_duration(self, input_path: str) -> Optional[float]:
        """Input duration in seconds, or None when it cannot be determined."""
        info = await self.get_video_info(input_path)
        try:
            duration = float(info["format"]["duration"])
        except (KeyError, TypeError, ValueError):
            logger.warning(
                "Could not determine input duration",
                extra={"input_path": input_path, "probe_error": info.get("error")},
            )
            return None
        return duration if duration > 0 else None

    def build_transcode_command(self, job: TranscodeJob) -> list[str]:
        """Build the FFmpeg argument list for a job.

        Raises:
            InvalidTranscodingOption: If resolution or codec is not allowed
        """
        width, height = parse_resolution(job.resolution)
        codec = parse_codec(job.codec)
        webm = codec.startswith("libvpx")

        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-loglevel", "error",
            "-y",
            "-i", job.input_path,
            "-c:v", codec,
            "-b:v", self.config.video_bitrate,
            "-crf", str(self.config.crf),
            "-vf", f"scale={width}:{height}",
            "-threads", str(self.config.threads),
            "-c:a", "libopus" if webm else "aac",
        ]

        if codec in ("libx264", "libx265"):
            cmd.extend(["-preset", self.config.preset])
        if not webm:
            cmd.extend(["-movflags", "+faststart"])

        cmd.extend(["-progress", "pipe:1", job.output_path])
        return cmd

    async def start(self, job: TranscodeJob) -> EngineHandle:
        """Spawn the encoder for ``job``.

        Validation happens before anything is spawned.

        Raises:
            InvalidTranscodingOption: If resolution or codec is not allowed
            EngineFailure: If the ffmpeg process could not be started
        """
        cmd = self.build_transcode_command(job)
        duration = await self.probe_duration(job.input_path)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineFailure(f"Failed to start ffmpeg: {e}", job_id=job.job_id) from e

        logger.info(
            "Spawned ffmpeg",
            extra={"job_id": job.job_id, "pid": process.pid, "command": " ".join(cmd)},
        )
        return EngineHandle(job.job_id, process, duration)
