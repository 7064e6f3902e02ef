"""
The data contract handed to the reasoning engine, and parsing of its reply.

The payload is an ordered list of content parts. Text parts label what
follows, so each image is preceded by its source and timestamp; the engine
needs both to compute elapsed time between frames.
"""

import json
import re
from typing import Optional

from incident_lens.core.errors import AnalysisParseError
from incident_lens.ingest.case import CaseResult
from incident_lens.prompts.analysis_prompt import (
    AUDIO_ATTACHED_NOTE,
    DEFAULT_USER_PROMPT,
    EVIDENCE_INTRO,
    FRAME_LABEL_TEMPLATE,
    SOURCE_HEADER_TEMPLATE,
    SYNTHESIS_INSTRUCTION,
)


def text_part(text: str) -> dict:
    return {"text": text}


def inline_part(mime_type: str, data_b64: str) -> dict:
    return {"inline_data": {"mime_type": mime_type, "data": data_b64}}


def build_analysis_parts(case: CaseResult, user_prompt: Optional[str] = None) -> list[dict]:
    parts: list[dict] = []

    if case.audio is not None:
        parts.append(inline_part("audio/wav", case.audio.wav_b64))
        parts.append(text_part(AUDIO_ATTACHED_NOTE))

    parts.append(text_part(EVIDENCE_INTRO))

    for index, source_frames in enumerate(case.sources, start=1):
        parts.append(text_part(SOURCE_HEADER_TEMPLATE.format(
            index=index,
            name=source_frames.source.display_name,
        )))
        for i, frame in enumerate(source_frames.frames, start=1):
            parts.append(text_part(FRAME_LABEL_TEMPLATE.format(
                index=i,
                timestamp=frame.timestamp_seconds,
            )))
            parts.append(inline_part("image/jpeg", frame.image_b64))

    parts.append(text_part(SYNTHESIS_INSTRUCTION))
    parts.append(text_part(user_prompt or DEFAULT_USER_PROMPT))
    return parts


def extract_analysis_json(text: str) -> dict:
    """
    Pull the structured report out of the engine's free-text reply.

    The reply is reasoning followed by a ```json fenced block. If the fence is
    missing, fall back to the span between the first '{' and the last '}'.
    """
    if not text:
        raise AnalysisParseError("empty analysis response")

    match = re.search(r"```json\s*\n(.*)\n\s*```", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError as e:
            raise AnalysisParseError(f"invalid JSON in fenced block: {e}") from e

    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        try:
            return json.loads(text[first:last + 1])
        except json.JSONDecodeError:
            pass

    raise AnalysisParseError("could not extract structured data from analysis response")
