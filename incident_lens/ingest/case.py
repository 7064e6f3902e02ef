"""
Case ingestion: frames for every source plus one audio clip, tagged with a
generation number.

Starting a new case bumps the generation and cancels the pending task. An
extraction that still resolves afterwards carries an older generation and is
dropped instead of being applied to the new case.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

from incident_lens.audio.extractor import AudioClip, AudioExtractor
from incident_lens.core.errors import StaleAsyncResult
from incident_lens.core.event_bus import CASE_INGESTED, event_bus
from incident_lens.core.logging import get_logger
from incident_lens.vision.frame_sampler import FrameSample, FrameSampler
from incident_lens.vision.video_source import VideoSource


@dataclass(frozen=True)
class SourceFrames:
    source: VideoSource
    frames: tuple[FrameSample, ...]


@dataclass(frozen=True)
class CaseResult:
    generation: int
    sources: tuple[SourceFrames, ...]
    audio: Optional[AudioClip] = None

    def summary(self) -> dict:
        return {
            "generation": self.generation,
            "sources": [
                {
                    "id": s.source.id,
                    "display_name": s.source.display_name,
                    "timestamps": [f.timestamp_seconds for f in s.frames],
                }
                for s in self.sources
            ],
            "audio": None if self.audio is None else {
                "sample_rate": self.audio.sample_rate,
                "channels": self.audio.channel_count,
                "seconds": round(self.audio.duration_seconds, 3),
            },
        }


@dataclass
class CaseIngestor:
    """
    Runs one case at a time. Blocking decode work is moved off the event loop
    one call at a time, so frames are still extracted strictly sequentially.
    """
    sampler: FrameSampler = field(default_factory=FrameSampler)
    audio: AudioExtractor = field(default_factory=AudioExtractor)
    generation: int = 0
    current: Optional[CaseResult] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    def __post_init__(self):
        self.logger = get_logger()

    # ── Generation bookkeeping ─────────────────────────────────────────────────

    def begin(self) -> int:
        self.generation += 1
        self.current = None
        return self.generation

    def require_current(self, generation: int) -> None:
        if generation != self.generation:
            raise StaleAsyncResult(generation, self.generation)

    def accept(self, result: CaseResult) -> bool:
        """Apply a finished result unless a newer case has started since."""
        try:
            self.require_current(result.generation)
        except StaleAsyncResult as e:
            self.logger.warning(
                "stale_result_dropped",
                generation=e.generation,
                current=e.current,
            )
            return False

        self.current = result
        self.logger.info("case_ingested", **result.summary())
        event_bus.publish(CASE_INGESTED, result.summary())
        return True

    # ── Extraction ─────────────────────────────────────────────────────────────

    async def _extract(
        self,
        generation: int,
        sources: Sequence[VideoSource],
        frame_count: Optional[int],
    ) -> CaseResult:
        collected = []
        for source in sources:
            frames = await asyncio.to_thread(self.sampler.sample, source, frame_count)
            collected.append(SourceFrames(source=source, frames=tuple(frames)))
            if generation != self.generation:
                # Superseded mid-way; skip the remaining decode work
                break

        clip = None
        if sources and generation == self.generation:
            # Audio comes from the first source only
            clip = await asyncio.to_thread(self.audio.extract, sources[0])

        return CaseResult(generation=generation, sources=tuple(collected), audio=clip)

    def start_case(
        self,
        sources: Sequence[VideoSource],
        frame_count: Optional[int] = None,
    ) -> asyncio.Task:
        """Schedule ingestion for a new case, cancelling any pending one."""
        if not sources:
            raise ValueError("a case needs at least one video source")

        if self._task is not None and not self._task.done():
            self._task.cancel()
            self.logger.info("case_ingestion_cancelled", generation=self.generation)

        generation = self.begin()
        self.logger.info(
            "case_ingestion_started",
            generation=generation,
            sources=[s.id for s in sources],
        )
        self._task = asyncio.get_running_loop().create_task(
            self._extract(generation, list(sources), frame_count)
        )
        return self._task

    async def ingest(
        self,
        sources: Sequence[VideoSource],
        frame_count: Optional[int] = None,
    ) -> Optional[CaseResult]:
        """
        Start a case and wait for it. Returns None if a newer case superseded
        this one. SourceUnreadable propagates to the caller.
        """
        task = self.start_case(sources, frame_count)
        try:
            result = await task
        except asyncio.CancelledError:
            if task is not self._task:
                self.logger.info("case_superseded", generation=self.generation)
                return None
            raise
        return result if self.accept(result) else None
