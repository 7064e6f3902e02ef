import base64
import json
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import requests

from incident_lens.audio.wav import encode_wav
from incident_lens.core.config import get_settings
from incident_lens.core.errors import AudioUnavailable
from incident_lens.core.logging import get_logger
from incident_lens.vision.video_source import VideoSource


# Reasoning engines accept mono or stereo only
MAX_CHANNELS = 2


@dataclass(frozen=True)
class AudioClip:
    """
    One base64 WAV payload per case. Duration never exceeds the configured cap.
    """
    sample_rate: int
    channel_count: int
    num_samples: int
    wav_b64: str

    @property
    def wav_bytes(self) -> bytes:
        return base64.b64decode(self.wav_b64)

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / self.sample_rate


class AudioDecoder(Protocol):
    def decode(self, data: bytes, sample_rate: int) -> np.ndarray:
        """Return float32 samples shaped (frames, channels) in [-1, 1]."""
        ...


def fetch_source_bytes(resource: str, timeout: float) -> bytes:
    """Raw bytes of a local file or an http(s) URL."""
    if resource.startswith(("http://", "https://")):
        response = requests.get(resource, timeout=timeout)
        response.raise_for_status()
        return response.content
    return Path(resource).read_bytes()


def _stderr_excerpt(stderr: bytes, max_chars: int = 500) -> str:
    s = (stderr or b"").decode("utf8", errors="replace").strip()
    return s[-max_chars:]


class FFmpegAudioDecoder:
    """
    Decodes the first audio stream with ffmpeg into float32 PCM, resampled
    to the requested rate. Channel count comes from ffprobe so samples can be
    de-interleaved; more than two channels are down-mixed to stereo.
    """

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.settings = get_settings()
        self.timeout = timeout_seconds or self.settings.fetch_timeout_seconds

    def _require_tool(self, name: str, override: str) -> str:
        if override:
            if Path(override).expanduser().is_file():
                return str(Path(override).expanduser())
            raise AudioUnavailable(f"configured {name} path does not exist: {override}")
        exe = shutil.which(name)
        if not exe:
            raise AudioUnavailable(f"missing required tool '{name}' on PATH")
        return exe

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                args,
                check=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise AudioUnavailable(f"{args[0]} timed out after {self.timeout}s") from e
        except OSError as e:
            raise AudioUnavailable(f"failed to execute {args[0]}: {e}") from e

    def _audio_channels(self, path: str) -> int:
        ffprobe = self._require_tool("ffprobe", self.settings.ffprobe_path)
        res = self._run([
            ffprobe, "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "stream=channels",
            "-of", "json",
            path,
        ])
        if res.returncode != 0:
            raise AudioUnavailable(f"ffprobe failed: {_stderr_excerpt(res.stderr)}")
        try:
            streams = json.loads(res.stdout.decode("utf8", errors="replace")).get("streams") or []
        except json.JSONDecodeError as e:
            raise AudioUnavailable(f"ffprobe returned invalid JSON: {e}") from e
        if not streams:
            raise AudioUnavailable("source has no audio stream")

        channels = streams[0].get("channels")
        if not isinstance(channels, int) or channels <= 0:
            raise AudioUnavailable(f"invalid channel count {channels!r}")
        return channels

    def decode(self, data: bytes, sample_rate: int) -> np.ndarray:
        ffmpeg = self._require_tool("ffmpeg", self.settings.ffmpeg_path)

        # The source container may need seeking (mp4 moov atom at the end),
        # so decode from a temporary file rather than a pipe
        fd, path = tempfile.mkstemp(suffix=".media")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)

            channels = min(self._audio_channels(path), MAX_CHANNELS)
            res = self._run([
                ffmpeg, "-v", "error", "-nostdin",
                "-i", path,
                "-vn", "-map", "0:a:0",
                "-ac", str(channels),
                "-ar", str(int(sample_rate)),
                "-f", "f32le", "-acodec", "pcm_f32le",
                "pipe:1",
            ])
        finally:
            os.unlink(path)

        if res.returncode != 0:
            raise AudioUnavailable(f"ffmpeg decode failed: {_stderr_excerpt(res.stderr)}")

        pcm = np.frombuffer(res.stdout, dtype="<f4")
        usable = (pcm.size // channels) * channels
        return pcm[:usable].reshape(-1, channels)


class AudioExtractor:
    """
    Decodes a source's audio track, keeps at most the first
    `audio_max_seconds`, and packages it as a base64 WAV.

    Failure is non-fatal: extract() returns None and the case proceeds
    without audio.
    """

    def __init__(self, decoder: Optional[AudioDecoder] = None):
        self.settings = get_settings()
        self.logger = get_logger()
        self.decoder = decoder or FFmpegAudioDecoder()

    def extract(self, source: VideoSource) -> Optional[AudioClip]:
        sample_rate = self.settings.audio_sample_rate
        try:
            data = fetch_source_bytes(source.resource, self.settings.fetch_timeout_seconds)
            samples = self.decoder.decode(data, sample_rate)
        except (AudioUnavailable, requests.RequestException, OSError, ValueError) as e:
            self.logger.warning(
                "audio_extraction_skipped",
                source=source.id,
                error=str(e),
                action="proceeding_without_audio",
            )
            return None

        samples = np.asarray(samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        if samples.shape[0] == 0:
            self.logger.warning("audio_extraction_skipped", source=source.id, error="no samples decoded")
            return None

        max_frames = self.settings.audio_max_seconds * sample_rate
        kept = min(samples.shape[0], max_frames)
        wav = encode_wav(samples[:kept], sample_rate)

        clip = AudioClip(
            sample_rate=sample_rate,
            channel_count=int(samples.shape[1]),
            num_samples=kept,
            wav_b64=base64.b64encode(wav).decode("utf-8"),
        )
        self.logger.info(
            "audio_extracted",
            source=source.id,
            channels=clip.channel_count,
            seconds=round(clip.duration_seconds, 3),
            truncated=kept < samples.shape[0],
        )
        return clip
