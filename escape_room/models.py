from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime
from datetime import datetime


class GameSession(SQLModel, table=True):
    __tablename__ = "sessions"

    # casefolded team name; one countdown per team
    team_key: str = Field(primary_key=True, max_length=64)
    team_name: str = Field(max_length=64)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    ends_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))


class Score(SQLModel, table=True):
    __tablename__ = "scores"

    id: Optional[int] = Field(default=None, primary_key=True)
    team_key: str = Field(max_length=64, unique=True)
    team_name: str = Field(max_length=64)
    duration_seconds: int
    badge: str = Field(max_length=16)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
