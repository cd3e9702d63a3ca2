"""
Tutor Module - Answers student clarification questions during an exam.
"""
from .assistant import TutorAssistant, TutorReply, FALLBACK_REPLY

__all__ = ["TutorAssistant", "TutorReply", "FALLBACK_REPLY"]
