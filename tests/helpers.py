"""Builders shared by the test modules."""
import math
from concurrent.futures import Executor, Future
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from earthwalk_geo import GeoPoint, Territory, TimedPoint

BASE_LAT = 48.8566
BASE_LON = 2.3522
T0 = 1767225600.0
_R = 6_371_000.0


def offset(x_m: float, y_m: float) -> GeoPoint:
    """Point x_m east and y_m north of the base point."""
    lat = BASE_LAT + math.degrees(y_m / _R)
    lon = BASE_LON + math.degrees(x_m / (_R * math.cos(math.radians(BASE_LAT))))
    return GeoPoint(latitude=lat, longitude=lon)


def sample(x_m: float, y_m: float, t: float, accuracy: float = 5.0,
           speed: Optional[float] = None) -> TimedPoint:
    return TimedPoint(offset(x_m, y_m), t, accuracy, speed)


def walk(points: Iterable[Tuple[float, float]], start: float = T0,
         step: float = 5.0) -> List[TimedPoint]:
    return [sample(x, y, start + i * step) for i, (x, y) in enumerate(points)]


def square_territory(x0: float, y0: float, x1: float, y1: float,
                     owner: str = "rival", territory_id: str = "rival-1") -> Territory:
    corners = [offset(x0, y0), offset(x0, y1), offset(x1, y1), offset(x1, y0)]
    return Territory.from_path(owner, corners, started_at=T0 - 86400,
                               territory_id=territory_id)


def path_of(points: Sequence[Tuple[float, float]]) -> List[GeoPoint]:
    return [offset(x, y) for x, y in points]


# 45 m square walked clockwise; closes at index 10 (25 m from the start)
SQUARE_LOOP = [
    (0, 0), (15, 0), (30, 0), (45, 0),
    (45, 15), (45, 30), (45, 45),
    (30, 45), (15, 45), (0, 45),
    (0, 25), (0, 10),
]

# crosses itself around (21, 21)
BOW_TIE = [
    (0, 0), (10, 10), (20, 20), (30, 30), (40, 40), (40, 21),
    (40, 2), (28, 14), (14, 28), (2, 40), (0, 20), (0, 3),
]


class DeferredExecutor(Executor):
    """Queues work until run_all(), to test late collaborator results."""

    def __init__(self):
        self.pending: List[Tuple[Future, Callable[[], object]]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, lambda: fn(*args, **kwargs)))
        return future

    def run_all(self) -> int:
        ran = 0
        while self.pending:
            future, call = self.pending.pop(0)
            try:
                future.set_result(call())
            except Exception as e:
                future.set_exception(e)
            ran += 1
        return ran
