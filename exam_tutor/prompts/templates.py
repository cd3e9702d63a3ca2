"""
Prompt Templates - Grading, summary and tutor prompts.

Design Principles:
1. RUBRIC FIRST: every grading prompt embeds the full rubric text
2. STRUCTURE: grading and summary prompts demand one JSON object
3. GROUNDING: the tutor answers from course material when it is provided
4. HONESTY: low-confidence or missing material is stated, not hidden
"""
from typing import List, Dict, Optional

from ..criteria import RubricItem, ExamQuestion, format_rubric_text

STAGE_CHAT = "chat"
STAGE_ANSWER = "answer"
STAGE_FEEDBACK = "feedback"
STAGES = (STAGE_CHAT, STAGE_ANSWER, STAGE_FEEDBACK)

NO_MATERIAL_NOTICE = "No reference material found for this question."


class PromptTemplates:
    """
    Collection of prompt templates for exam grading and tutoring.

    Grading prompts share one system prompt skeleton; only the stage focus
    and the user prompt differ.
    """

    # ==========================================================================
    # GRADING SYSTEM PROMPT
    # ==========================================================================

    GRADER_SYSTEM_PROMPT = """You are an expert examiner. {role}

{rubric}

Grading guidelines:
1. Review every evaluation area and its criteria in the rubric above.
{focus}
{next_step}. Give an overall score as an integer from 0 to 100.
{next_step_2}. Score each rubric area on a 0-5 scale (0: not met at all, 5: fully met).
{next_step_3}. Give specific, constructive feedback.

Response format (JSON only):
{{
  "score": 75,
  "comment": "Your assessment of this stage against the rubric.",
  "rubric_scores": {{
{rubric_schema}
  }}
}}"""

    STAGE_ROLES = {
        STAGE_CHAT: "You grade the dialogue between a student and an AI tutor against the rubric.",
        STAGE_ANSWER: "You grade a student's final answer against the rubric.",
        STAGE_FEEDBACK: "You grade a student's reply to AI feedback on their answer against the rubric.",
    }

    STAGE_FOCUS = {
        STAGE_CHAT: [
            "Judge the quality of the student's questions, their grasp of the problem and the concepts they show in the dialogue, not only the final answer.",
            "Judge how effectively the student learned from and built on the tutor's replies.",
        ],
        STAGE_ANSWER: [
            "Judge how far the answer meets each evaluation area of the rubric.",
            "Judge the answer's completeness, correctness and logical structure as a whole.",
        ],
        STAGE_FEEDBACK: [
            "Judge whether the student understood the AI feedback and engaged with it.",
            "Judge whether the student's rebuttal or revision is logical and well founded.",
            "Judge how much the student grew through the feedback exchange.",
        ],
    }

    # ==========================================================================
    # GRADING USER PROMPTS
    # ==========================================================================

    CHAT_STAGE_PROMPT = """Grade the chat stage using the information below.

**Question:**
{question}
{context}
**Dialogue between the student and the AI tutor:**
{transcript}

Give the chat stage score and feedback according to the rubric."""

    ANSWER_STAGE_PROMPT = """Grade the final answer using the information below.

**Question:**
{question}
{context}
**Student's final answer:**
{answer}

Give the answer score and feedback according to the rubric."""

    FEEDBACK_STAGE_PROMPT = """Grade the feedback stage using the information below.

**Question:**
{question}
{context}
**Student's final answer:**
{answer}

**AI feedback:**
{feedback}

**Student's reply to the feedback:**
{reply}

Give the feedback stage score and feedback according to the rubric."""

    # ==========================================================================
    # SESSION SUMMARY PROMPTS
    # ==========================================================================

    SUMMARY_SYSTEM_PROMPT = "You are an expert examiner. You analyse all of a student's answers together and write a summary evaluation."

    SUMMARY_PROMPT = """Exam title: {title}

{rubric}

[Student answers and scores]
{questions}

Analyse the student's overall performance in detail. Include:
1. Overall sentiment (positive, negative or neutral)
2. Summary: an in-depth view of the answers as a whole, covering logic, accuracy and originality
3. Key strengths (at most 3), each with a concrete example
4. Areas needing improvement (at most 3), each with a concrete suggestion
5. Key quotes (2): sentences from the student's answers that decided the evaluation

Respond with JSON only:
{{
  "sentiment": "positive" | "negative" | "neutral",
  "summary": "detailed summary",
  "strengths": ["strength 1", "strength 2"],
  "weaknesses": ["weakness 1", "weakness 2"],
  "key_quotes": ["quote 1", "quote 2"]
}}"""

    # ==========================================================================
    # TUTOR PROMPT
    # ==========================================================================

    MATERIALS_PRIORITY_INSTRUCTION = """**[Course material first]**
- When [Course material reference] or [Material n] passages are provided below, they are the primary source.
- Do not offer guesses or generalities that conflict with the course material.
- If the passages are marked low confidence, use them only where they clearly apply.
- If the material does not cover the question, answer briefly from the exam scenario and say that the material does not cover it."""

    TUTOR_SYSTEM_PROMPT = """You are the professor for this exam, answering a student's clarification questions during the exam.

Exam: {title}

**Current question:**
{question}
{rubric}
Rules:
- Answer in Markdown.
- For factual questions, give only the fact, in at most one sentence.
- Do not reveal or write the answer to the exam question.
- Do not volunteer information the student did not ask for.

{materials_instruction}

{materials}"""

    @classmethod
    def rubric_scores_schema(cls, rubric: List[RubricItem]) -> str:
        """JSON schema lines for per-area rubric scores."""
        if not rubric:
            return '    "<evaluation area>": "integer 0-5"'
        return ",\n".join(
            f'    "{item.evaluation_area}": "integer 0-5 (0: not met at all, 5: fully met)"'
            for item in rubric
        )

    @classmethod
    def format_grader_system(cls, stage: str, rubric: List[RubricItem]) -> str:
        """System prompt for one grading stage."""
        focus_lines = cls.STAGE_FOCUS[stage]
        focus = "\n".join(f"{i}. {line}" for i, line in enumerate(focus_lines, start=2))
        first_free = 2 + len(focus_lines)

        return cls.GRADER_SYSTEM_PROMPT.format(
            role=cls.STAGE_ROLES[stage],
            rubric=format_rubric_text(rubric) or "(No rubric provided: grade on overall quality.)",
            focus=focus,
            next_step=first_free,
            next_step_2=first_free + 1,
            next_step_3=first_free + 2,
            rubric_schema=cls.rubric_scores_schema(rubric)
        )

    @staticmethod
    def _question_context(question: ExamQuestion) -> str:
        if not question.ai_context:
            return ""
        return f"\n**Question context:**\n{question.ai_context}\n"

    @staticmethod
    def format_transcript(messages: List[Dict[str, str]]) -> str:
        """Render chat turns as 'Student:' / 'AI:' lines."""
        lines = []
        for message in messages:
            speaker = "Student" if message.get('role') == 'user' else "AI"
            lines.append(f"{speaker}: {message.get('content', '')}")
        return "\n\n".join(lines)

    @classmethod
    def format_chat_stage(cls, question: ExamQuestion, messages: List[Dict[str, str]]) -> str:
        return cls.CHAT_STAGE_PROMPT.format(
            question=question.prompt,
            context=cls._question_context(question),
            transcript=cls.format_transcript(messages)
        )

    @classmethod
    def format_answer_stage(cls, question: ExamQuestion, answer: str) -> str:
        return cls.ANSWER_STAGE_PROMPT.format(
            question=question.prompt,
            context=cls._question_context(question),
            answer=answer or "(no answer submitted)"
        )

    @classmethod
    def format_feedback_stage(
        cls, question: ExamQuestion, answer: str, feedback: str, reply: str
    ) -> str:
        return cls.FEEDBACK_STAGE_PROMPT.format(
            question=question.prompt,
            context=cls._question_context(question),
            answer=answer or "(no answer submitted)",
            feedback=feedback,
            reply=reply
        )

    @classmethod
    def format_summary(
        cls,
        title: str,
        rubric: List[RubricItem],
        entries: List[Dict[str, object]]
    ) -> str:
        """
        Session summary prompt.

        Args:
            entries: One dict per question with 'prompt', 'answer', 'score'
        """
        blocks = []
        for number, entry in enumerate(entries, start=1):
            score = entry.get('score')
            blocks.append(
                f"Question {number}:\n{entry.get('prompt', '')}\n\n"
                f"Answer:\n{entry.get('answer') or '(no answer)'}\n\n"
                f"Score: {score if score is not None else 'ungraded'}\n"
            )
        return cls.SUMMARY_PROMPT.format(
            title=title or "Untitled exam",
            rubric=format_rubric_text(rubric),
            questions="\n---\n\n".join(blocks)
        )

    @classmethod
    def format_tutor_system(
        cls,
        title: str,
        question: ExamQuestion,
        rubric: Optional[List[RubricItem]],
        materials_context: str
    ) -> str:
        """
        System prompt for the exam tutor.

        An empty materials_context becomes an explicit "no reference material
        found" line.
        """
        rubric_text = format_rubric_text(rubric or [])
        return cls.TUTOR_SYSTEM_PROMPT.format(
            title=title or "Untitled exam",
            question=question.prompt,
            rubric=f"\n{rubric_text}\n" if rubric_text else "",
            materials_instruction=cls.MATERIALS_PRIORITY_INSTRUCTION,
            materials=materials_context if materials_context else NO_MATERIAL_NOTICE
        ).strip()
