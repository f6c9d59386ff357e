from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

QuestionType = Literal["gated", "comment"]


class TemplateQuestion(BaseModel):
    id: str = Field(min_length=1)
    text: str
    type: QuestionType = "gated"
    optional: bool = False
    category: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, value: object) -> object:
        # Legacy template rows omit the type for yes/no/na questions.
        return value or "gated"

    @property
    def is_optional(self) -> bool:
        """Comment-only and optional questions never block completion."""
        return self.type == "comment" or self.optional


class InspectionTemplateRead(BaseModel):
    id: str
    name: str
    questions: List[TemplateQuestion] = Field(min_length=1)

    class Config:
        from_attributes = True

    @field_validator("questions")
    @classmethod
    def unique_question_ids(cls, questions: List[TemplateQuestion]) -> List[TemplateQuestion]:
        seen: set[str] = set()
        for question in questions:
            if question.id in seen:
                raise ValueError(f"Duplicate question id '{question.id}'")
            seen.add(question.id)
        return questions

    def question(self, question_id: str) -> TemplateQuestion | None:
        return next((q for q in self.questions if q.id == question_id), None)

    @property
    def question_ids(self) -> list[str]:
        return [question.id for question in self.questions]
