from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # Stored and sent over the wire with camelCase keys.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# WAITING -> ACTIVE -> SHOWING_QUESTION <-> SHOWING_RESULTS -> ... -> ENDED
class GameStatus(str, Enum):
    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    SHOWING_QUESTION = "SHOWING_QUESTION"
    SHOWING_RESULTS = "SHOWING_RESULTS"
    ENDED = "ENDED"


class Player(CamelModel):
    id: str
    nickname: str
    score: int = 0


class Answer(CamelModel):
    player_id: str
    option_index: int
    response_time_ms: int


class Question(CamelModel):
    id: str
    text: str
    options: List[str] = Field(min_length=2, max_length=4)
    correct_option_index: int
    time_limit: int = Field(default=20, gt=0)  # seconds
    order: int = 0

    @model_validator(mode="after")
    def _check_correct_option(self):
        if not 0 <= self.correct_option_index < len(self.options):
            raise ValueError("correctOptionIndex must point at one of the options")
        return self


class Quiz(CamelModel):
    id: str
    title: str = ""
    owner_id: str
    questions: List[Question] = Field(default_factory=list)


class GameState(CamelModel):
    session_id: str
    quiz_id: str
    host_id: str
    status: GameStatus = GameStatus.WAITING
    current_question_index: int = -1
    players: Dict[str, Player] = Field(default_factory=dict)
    answers: Dict[str, Answer] = Field(default_factory=dict)
    question_start_time: Optional[int] = None  # epoch ms
    start_time: Optional[int] = None  # epoch ms


class NextQuestionOutcome(CamelModel):
    state: GameState
    question: Optional[Question] = None
    total_questions: int


class SubmitOutcome(CamelModel):
    correct: bool
    score: int


class ResultsOutcome(CamelModel):
    state: GameState
    correct_option_index: int
    answer_distribution: List[int]
    correct_count: int
