import asyncio
import os

from incident_lens.core.logging import setup_logging, get_logger
from incident_lens.core.config import get_settings
from incident_lens.core.errors import SourceUnreadable
from incident_lens.events import handlers  # noqa: F401  subscribes the event journal
from incident_lens.ingest.case import CaseIngestor, CaseResult
from incident_lens.vision.video_source import VideoSource

VIDEO_EXTENSIONS = (".mp4", ".mov", ".avi", ".mkv", ".webm")


def discover_videos(evidence_dir: str) -> list[str]:
    return sorted(
        f for f in os.listdir(evidence_dir)
        if f.lower().endswith(VIDEO_EXTENSIONS)
    )


def save_case_outputs(result: CaseResult, output_dir: str, video_filename: str) -> str:
    """
    Write keyframes and the audio clip for one case:
      {output_dir}/keyframes/{video_stem}/{timestamp}.jpg
      {output_dir}/keyframes/{video_stem}/audio.wav
    """
    video_stem = os.path.splitext(video_filename)[0]
    video_folder = os.path.join(output_dir, "keyframes", video_stem)
    os.makedirs(video_folder, exist_ok=True)

    for source_frames in result.sources:
        for frame in source_frames.frames:
            path = os.path.join(video_folder, f"{frame.timestamp_seconds:.3f}.jpg")
            with open(path, "wb") as f:
                f.write(frame.image_bytes)

    if result.audio is not None:
        with open(os.path.join(video_folder, "audio.wav"), "wb") as f:
            f.write(result.audio.wav_bytes)

    return video_folder


async def run(logger) -> int:
    settings = get_settings()
    evidence_dir = settings.evidence_input_path.rstrip("/")

    if not os.path.exists(evidence_dir):
        logger.warning("evidence_directory_not_found", path=evidence_dir)
        return 0

    video_files = discover_videos(evidence_dir)
    if not video_files:
        logger.warning("no_videos_found", path=evidence_dir)
        return 0

    logger.info("videos_discovered", count=len(video_files), files=video_files)

    ingestor = CaseIngestor()
    failures = 0
    for video_file in video_files:
        source = VideoSource(
            id=os.path.splitext(video_file)[0],
            resource=os.path.join(evidence_dir, video_file),
            display_name=video_file,
        )
        try:
            result = await ingestor.ingest([source])
        except SourceUnreadable as e:
            # One unreadable file must not stop the batch
            failures += 1
            logger.error("video_ingestion_failed", video=video_file, error=e.reason)
            continue

        if result is None:
            continue

        folder = save_case_outputs(result, settings.output_path, video_file)
        logger.info(
            "video_ingestion_completed",
            video=video_file,
            frames=sum(len(s.frames) for s in result.sources),
            has_audio=result.audio is not None,
            output=folder,
        )

    return failures


def main():
    setup_logging()
    logger = get_logger()

    logger.info("starting_ingestion")
    failures = asyncio.run(run(logger))
    logger.info("ingestion_completed", failures=failures)


if __name__ == "__main__":
    main()
