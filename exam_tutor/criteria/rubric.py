"""
Rubric and question parsing - Normalizes instructor-authored exam data.

Rubrics arrive as lists of dicts in either snake_case or camelCase:
- evaluation_area / evaluationArea
- detailed_criteria / detailedCriteria
- weight (optional)
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


@dataclass
class RubricItem:
    """One evaluation area of an exam rubric."""
    evaluation_area: str
    detailed_criteria: str = ""
    weight: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'evaluation_area': self.evaluation_area,
            'detailed_criteria': self.detailed_criteria,
        }
        if self.weight is not None:
            data['weight'] = self.weight
        return data

    def get_evaluation_context(self, number: int) -> str:
        """Format the item for an LLM prompt."""
        return f"{number}. {self.evaluation_area}\n   - Criteria: {self.detailed_criteria}"


@dataclass
class ExamQuestion:
    """A question as presented to the student."""
    idx: int
    prompt: str = ""
    ai_context: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'idx': self.idx, 'prompt': self.prompt, 'ai_context': self.ai_context}


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def parse_rubric(raw: Optional[List[Any]]) -> List[RubricItem]:
    """
    Build RubricItems from stored rubric data.

    Items without an evaluation area are skipped with a warning.
    """
    items: List[RubricItem] = []

    for entry in raw or []:
        if isinstance(entry, RubricItem):
            items.append(entry)
            continue
        if not isinstance(entry, dict):
            logger.warning(f"Skipping rubric entry of type {type(entry).__name__}")
            continue

        area = _first(entry, 'evaluation_area', 'evaluationArea')
        if not area:
            logger.warning(f"Skipping rubric entry without evaluation area: {entry}")
            continue

        weight = entry.get('weight')
        items.append(RubricItem(
            evaluation_area=str(area).strip(),
            detailed_criteria=str(_first(entry, 'detailed_criteria', 'detailedCriteria') or '').strip(),
            weight=float(weight) if isinstance(weight, (int, float)) else None
        ))

    return items


def parse_questions(raw: Optional[List[Any]]) -> List[ExamQuestion]:
    """
    Build ExamQuestions from stored question data.

    A question without an explicit idx takes its list position.
    """
    questions: List[ExamQuestion] = []

    for position, entry in enumerate(raw or []):
        if isinstance(entry, ExamQuestion):
            questions.append(entry)
            continue
        if isinstance(entry, str):
            questions.append(ExamQuestion(idx=position, prompt=entry))
            continue
        if not isinstance(entry, dict):
            continue

        idx = entry.get('idx')
        questions.append(ExamQuestion(
            idx=int(idx) if idx is not None else position,
            prompt=str(_first(entry, 'prompt', 'text') or ''),
            ai_context=str(_first(entry, 'ai_context', 'core_ability') or '')
        ))

    return questions


def format_rubric_text(items: List[RubricItem]) -> str:
    """Numbered rubric block for prompts; empty string when there is no rubric."""
    if not items:
        return ""
    lines = [item.get_evaluation_context(i) for i, item in enumerate(items, start=1)]
    return "**Evaluation rubric:**\n" + "\n".join(lines)
