"""
Grade Output Validator - Turns raw LLM grading output into a checked stage result.

A response that is not a JSON object, or has no numeric score, is a stage
failure. Scores outside their ranges are clamped and reported as warnings.
"""
import json
import math
import re
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
import logging

from config import GradingConfig
from ..criteria import RubricItem
from ..errors import StageGradingFailure

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "negative", "neutral")


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


@dataclass
class StageOutput:
    """A validated grading response for one stage."""
    score: int
    comment: str
    rubric_scores: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'score': self.score, 'comment': self.comment}
        if self.rubric_scores:
            data['rubric_scores'] = dict(self.rubric_scores)
        return data


class GradeOutputValidator:
    """
    Validates stage grading and session summary responses.

    Parsing follows the agents' approach: a ```json fenced block first, then
    the outermost {...} in the text.
    """

    def __init__(self, rubric_area_max: int = GradingConfig.RUBRIC_AREA_MAX):
        self.rubric_area_max = rubric_area_max

    @staticmethod
    def parse_json(response: str) -> Optional[Dict[str, Any]]:
        """Extract a JSON object from an LLM response."""
        if not response:
            return None

        json_match = re.search(r'```json\s*([\s\S]*?)\s*```', response)
        if json_match:
            try:
                parsed = json.loads(json_match.group(1))
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                pass

        json_match = re.search(r'\{[\s\S]*\}', response)
        if json_match:
            try:
                parsed = json.loads(json_match.group())
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                pass

        return None

    @staticmethod
    def _number(value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value) if math.isfinite(value) else None
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return None
            return number if math.isfinite(number) else None
        return None

    def validate_stage(
        self,
        response: str,
        stage: str,
        q_idx: int,
        rubric: Optional[List[RubricItem]] = None
    ) -> StageOutput:
        """
        Validate one stage's raw response.

        Raises:
            StageGradingFailure: no JSON object, or no numeric score
        """
        parsed = self.parse_json(response)
        if parsed is None:
            raise StageGradingFailure(stage, q_idx, "response is not a JSON object")

        raw_score = self._number(parsed.get('score'))
        if raw_score is None:
            raise StageGradingFailure(stage, q_idx, f"missing or non-numeric score: {parsed.get('score')!r}")

        warnings: List[str] = []
        score = round_half_up(raw_score)
        if score < 0 or score > 100:
            warnings.append(f"score {score} clamped to 0-100")
            score = max(0, min(100, score))

        comment = parsed.get('comment')
        if not isinstance(comment, str) or not comment.strip():
            warnings.append("empty comment")
            comment = f"{stage.capitalize()} stage graded"

        rubric_scores = self._rubric_scores(parsed.get('rubric_scores'), rubric or [], warnings)

        for warning in warnings:
            logger.warning(f"⚠️ Q{q_idx} {stage}: {warning}")

        return StageOutput(score=score, comment=comment.strip(), rubric_scores=rubric_scores, warnings=warnings)

    def _rubric_scores(
        self, raw: Any, rubric: List[RubricItem], warnings: List[str]
    ) -> Dict[str, int]:
        if not isinstance(raw, dict):
            return {}

        areas = [item.evaluation_area for item in rubric] or list(raw.keys())
        scores: Dict[str, int] = {}

        for area in areas:
            value = self._number(raw.get(area))
            if value is None:
                continue
            rounded = round_half_up(value)
            if rounded < 0 or rounded > self.rubric_area_max:
                warnings.append(f"rubric score for '{area}' clamped to 0-{self.rubric_area_max}")
            scores[area] = max(0, min(self.rubric_area_max, rounded))

        return scores

    def validate_summary(self, response: str) -> Optional[Dict[str, Any]]:
        """
        Normalize a session summary response.

        Returns:
            Dict with sentiment, summary, strengths, weaknesses, key_quotes,
            or None when the response is unusable
        """
        parsed = self.parse_json(response)
        if parsed is None or not isinstance(parsed.get('summary'), str):
            return None

        def _strings(value: Any, limit: int) -> List[str]:
            if not isinstance(value, list):
                return []
            return [str(v) for v in value if v][:limit]

        sentiment = str(parsed.get('sentiment', '')).lower()
        return {
            'sentiment': sentiment if sentiment in SENTIMENTS else 'neutral',
            'summary': parsed['summary'],
            'strengths': _strings(parsed.get('strengths'), 3),
            'weaknesses': _strings(parsed.get('weaknesses'), 3),
            'key_quotes': _strings(parsed.get('key_quotes', parsed.get('keyQuotes')), 2),
        }
