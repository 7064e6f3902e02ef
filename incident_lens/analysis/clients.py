import json
import re
from dataclasses import dataclass
from typing import Optional

import requests

from incident_lens.analysis.payload import build_analysis_parts, extract_analysis_json
from incident_lens.core.config import get_settings
from incident_lens.core.logging import get_logger
from incident_lens.ingest.case import CaseResult
from incident_lens.prompts.analysis_prompt import ANALYSIS_SYSTEM_PROMPT
from incident_lens.prompts.region_prompt import REGION_QUERY_PROMPT
from incident_lens.tools.region_capture import RegionOfInterest


# ── Result types ───────────────────────────────────────────────────────────────

@dataclass
class RegionAnswer:
    question: str
    answer: str
    confidence: str = "Low"
    details: str = ""

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "answer": self.answer,
            "confidence": self.confidence,
            "details": self.details,
        }


@dataclass
class IncidentReport:
    report: dict
    raw_text: str


# ── Reasoning engine ───────────────────────────────────────────────────────────

class IncidentAnalysisClient:
    """
    Sends the frames + audio payload of a case to the reasoning engine and
    returns its structured report. The engine's internals are out of scope;
    it answers with {"response": "<reasoning> ```json {...} ```"}.
    """

    def __init__(self):
        self.settings = get_settings()
        self.logger = get_logger()
        self.endpoint = self.settings.analysis_endpoint
        self.model = self.settings.analysis_model

    def analyze(self, case: CaseResult, user_prompt: Optional[str] = None) -> IncidentReport:
        parts = build_analysis_parts(case, user_prompt)
        payload = {
            "model": self.model,
            "system": ANALYSIS_SYSTEM_PROMPT,
            "parts": parts,
            "options": {"temperature": 0.2},
        }

        self.logger.info(
            "incident_analysis_requested",
            generation=case.generation,
            parts=len(parts),
            has_audio=case.audio is not None,
        )
        response = requests.post(
            self.endpoint,
            json=payload,
            timeout=self.settings.analysis_timeout_seconds,
        )
        response.raise_for_status()
        text = response.json().get("response", "")

        report = extract_analysis_json(text)
        self.logger.info("incident_analysis_received", generation=case.generation)
        return IncidentReport(report=report, raw_text=text)


# ── Targeted region queries ────────────────────────────────────────────────────

class RegionQueryClient:
    """
    Asks the Ollama vision model a free-text question about one region crop.
    Unparsable model output degrades to a Low-confidence answer; transport
    errors propagate.
    """

    def __init__(self):
        self.settings = get_settings()
        self.logger = get_logger()
        self.base_url = self.settings.ollama_host
        self.model = self.settings.multimodal_model

    def _extract_json(self, text: str) -> Optional[dict]:
        if not text:
            return None

        try:
            return json.loads(text.strip())
        except json.JSONDecodeError:
            pass

        match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                pass

        match = re.search(r"\{[^{}]+\}", text, re.DOTALL)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                pass

        self.logger.warning("region_answer_parse_failed", raw_response=text[:200])
        return None

    def ask(self, roi: RegionOfInterest, question: str) -> RegionAnswer:
        question = question.strip()
        if not question:
            raise ValueError("question must not be empty")

        self.logger.info("region_query_start", roi_id=roi.id, model=self.model)
        payload = {
            "model": self.model,
            "prompt": REGION_QUERY_PROMPT.format(question=question),
            "images": [roi.image_b64],
            "format": "json",
            "stream": False,
            "options": {"temperature": 0.1},
        }
        response = requests.post(
            f"{self.base_url}/api/generate",
            json=payload,
            timeout=self.settings.region_query_timeout_seconds,
        )
        response.raise_for_status()
        raw = response.json().get("response", "")

        data = self._extract_json(raw)
        if not isinstance(data, dict):
            return RegionAnswer(
                question=question,
                answer=raw or "Analysis failed",
                confidence="Low",
                details="Parsing error",
            )

        answer = RegionAnswer(
            question=question,
            answer=str(data.get("answer", "")).strip() or "No answer given",
            confidence=str(data.get("confidence", "Low")).strip() or "Low",
            details=str(data.get("details", "")).strip(),
        )
        self.logger.info("region_query_done", roi_id=roi.id, confidence=answer.confidence)
        return answer
