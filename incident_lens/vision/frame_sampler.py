import base64
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np

from incident_lens.core.config import get_settings
from incident_lens.core.errors import SourceUnreadable
from incident_lens.core.logging import get_logger
from incident_lens.vision.video_source import OpenCVVideo, SeekableVideo, VideoSource


@dataclass(frozen=True)
class FrameSample:
    """
    One downscaled still forwarded to the reasoning engine.
    timestamp_seconds is the requested seek time, not the decoder's
    achieved frame time (seeks snap to the nearest decodable frame).
    """
    image_bytes: bytes
    timestamp_seconds: float

    @property
    def image_b64(self) -> str:
        return base64.b64encode(self.image_bytes).decode("utf-8")


def sample_timestamps(
    duration: float,
    count: int,
    window_start: float = 0.1,
    window_end: float = 0.9,
) -> list[float]:
    """
    `count` timestamps evenly spaced over [window_start·d, window_end·d].
    The window skips lead-in/lead-out where footage is often black or shaky.
    """
    if count < 2:
        raise ValueError("count must be at least 2")
    if not duration or duration <= 0:
        raise ValueError("duration must be greater than 0")
    if not 0.0 <= window_start < window_end <= 1.0:
        raise ValueError("sampling window must satisfy 0 <= start < end <= 1")

    start = duration * window_start
    end = duration * window_end
    interval = (end - start) / (count - 1)
    return [start + interval * i for i in range(count)]


def encode_jpeg(frame: np.ndarray, quality: int) -> bytes:
    ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return buffer.tobytes()


class FrameSampler:
    """
    Extracts N evenly spaced, half-resolution JPEG stills from a source.

    One decoder cannot be seeked concurrently, so the N seeks run one after
    the other. Cost grows linearly with N.
    """

    def __init__(
        self,
        open_video: Optional[Callable[[str], SeekableVideo]] = None,
    ):
        self.settings = get_settings()
        self.logger = get_logger()
        self._open_video = open_video or OpenCVVideo

    def sample(self, source: VideoSource, count: Optional[int] = None) -> list[FrameSample]:
        count = self.settings.frame_sample_count if count is None else count
        if count < 2:
            raise ValueError("count must be at least 2")

        video = self._open_video(source.resource)
        try:
            meta = video.metadata()
            if not meta.duration_seconds or meta.duration_seconds <= 0:
                raise SourceUnreadable(source.resource, "duration is unknown or zero")

            timestamps = sample_timestamps(
                meta.duration_seconds,
                count,
                self.settings.frame_window_start,
                self.settings.frame_window_end,
            )

            target = (
                max(1, int(meta.native_width * self.settings.frame_downscale)),
                max(1, int(meta.native_height * self.settings.frame_downscale)),
            )

            samples = []
            for ts in timestamps:
                frame = video.read_at(ts)
                small = cv2.resize(frame, target, interpolation=cv2.INTER_AREA)
                try:
                    data = encode_jpeg(small, self.settings.frame_jpeg_quality)
                except ValueError as e:
                    raise SourceUnreadable(source.resource, f"frame at {ts:.3f}s: {e}") from e
                samples.append(FrameSample(image_bytes=data, timestamp_seconds=ts))
        finally:
            video.close()

        self.logger.info(
            "frames_sampled",
            source=source.id,
            count=len(samples),
            duration=meta.duration_seconds,
            width=target[0],
            height=target[1],
        )
        return samples
