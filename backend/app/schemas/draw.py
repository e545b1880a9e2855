from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExclusionCreate(BaseModel):
    user_a_id: str = Field(min_length=1, max_length=36)
    user_b_id: str = Field(min_length=1, max_length=36)

    @field_validator("user_a_id", "user_b_id")
    @classmethod
    def _strip_ids(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("must not be blank")
        return normalized


class ExclusionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_id: str
    user_a_id: str
    user_b_id: str
    created_at: datetime | None = None


class AssignmentPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_id: str
    group_name: str
    receiver_id: str
    is_revealed: bool


class DrawStatusPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group_id: str
    is_draw_active: bool
    member_count: int
    exclusion_count: int


class DrawResultPublic(BaseModel):
    group_id: str
    is_draw_active: bool
    assignment_count: int
