import math
import secrets
import time
from typing import Iterable, List

from .models import Player

BASE_POINTS = 1000
MAX_TIME_BONUS_POINTS = 500
LEADERBOARD_SIZE = 10


def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_join_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def compute_points(correct: bool, response_time_ms: int, time_limit_sec: int) -> int:
    """Points for a single answer.

    Correct answers earn ``BASE_POINTS`` plus a time bonus that shrinks
    linearly from ``MAX_TIME_BONUS_POINTS`` at 0 ms to nothing at the time
    limit, so the result always lies in ``[1000, 1500]``.
    """
    if not correct:
        return 0
    time_bonus = max(0.0, 1 - response_time_ms / (time_limit_sec * 1000))
    # half-up, not banker's rounding
    return math.floor(BASE_POINTS + time_bonus * MAX_TIME_BONUS_POINTS + 0.5)


def sort_leaderboard(players: Iterable[Player], limit: int = LEADERBOARD_SIZE) -> List[Player]:
    # sorted() is stable: equal scores keep roster order
    return sorted(players, key=lambda p: -p.score)[:limit]
