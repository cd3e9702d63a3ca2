"""
Common retrieval capability shared by the vector and keyword strategies.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

METHOD_VECTOR = "vector"
METHOD_KEYWORD = "keyword"
METHOD_NONE = "none"


@dataclass
class RetrievalOutcome:
    """Context text for a tutor prompt and how it was found."""
    text: str
    method: str = METHOD_NONE
    top_similarity: Optional[float] = None
    results_count: int = 0
    low_confidence: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.text

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def empty(cls) -> "RetrievalOutcome":
        return cls(text="", method=METHOD_NONE)


class BaseRetriever(ABC):
    """A retrieval strategy bound to one exam's materials."""

    method: str = METHOD_NONE

    @abstractmethod
    def search(self, query: str) -> RetrievalOutcome:
        """Return context text relevant to `query`."""
        raise NotImplementedError
