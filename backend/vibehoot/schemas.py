from typing import Dict, List, Optional

from pydantic import Field

from .models import CamelModel, GameStatus, Player, Question


# Inbound realtime commands

class CreateGameIn(CamelModel):
    quiz_id: str
    host_id: str


class JoinGameIn(CamelModel):
    join_code: str
    nickname: str = Field(min_length=1)
    player_id: str


class JoinCodeIn(CamelModel):
    join_code: str


class SubmitAnswerIn(CamelModel):
    join_code: str
    player_id: str
    option_index: int = Field(ge=0)


# HTTP

class UpsertQuizIn(CamelModel):
    quiz_id: str
    title: str = ""
    owner_id: str
    questions: List[Question]


class PublicSessionOut(CamelModel):
    join_code: str
    status: GameStatus
    players: Dict[str, Player]
    current_question_index: int
    answer_count: int
    question_start_time: Optional[int] = None
    start_time: Optional[int] = None


class LeaderboardOut(CamelModel):
    leaderboard: List[Player]
