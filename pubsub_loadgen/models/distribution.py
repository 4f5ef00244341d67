import math
import random
from typing import Any, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, model_validator

from ..errors import InvalidDistributionKind, InvalidNormalParams, InvalidRandomParams

NORMAL = "normal"
RANDOM = "random"
DISTRIBUTIONS = (NORMAL, RANDOM)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _to_sample(value: float) -> int:
    # Non-finite draws (overflowing parameters) collapse to the floor
    if not math.isfinite(value):
        return 1
    return max(round(value), 1)


class NormalDistribution(BaseModel):
    """
    Gaussian sampler driven by the Box-Muller transform.

    `variance` is used as the scale of the standard normal draw, so a
    variance of 0 always yields `round(mean)`.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind: Literal["normal"] = NORMAL
    mean: float
    variance: float

    def sample(self, rng: Optional[random.Random] = None) -> int:
        rng = rng or random
        # random() is in [0, 1); 1 - u keeps log() away from zero
        u1 = 1.0 - rng.random()
        u2 = rng.random()
        z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
        return _to_sample(self.mean + z * self.variance)


class UniformDistribution(BaseModel):
    """Uniform sampler over [min, max]."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    kind: Literal["random"] = RANDOM
    min: float
    max: float

    @model_validator(mode="after")
    def _check_bounds(self) -> "UniformDistribution":
        if self.min > self.max:
            raise ValueError("min cannot be greater than max")
        return self

    def sample(self, rng: Optional[random.Random] = None) -> int:
        rng = rng or random
        return _to_sample(self.min + (self.max - self.min) * rng.random())


Distribution = Union[NormalDistribution, UniformDistribution]


def parse_distribution(raw: Any) -> Distribution:
    """
    Build a distribution from its config form, e.g. ``["normal", 100, 10]``
    or ``["random", 1, 5]``.

    Raises a DistributionError subclass describing the first problem found.
    """
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence) or not raw:
        raise InvalidDistributionKind(
            f"Distribution should be a list like [kind, a, b], got {raw!r}"
        )

    kind = raw[0]
    params = list(raw[1:3])

    if kind == NORMAL:
        if len(params) != 2 or not all(_is_number(p) for p in params):
            raise InvalidNormalParams(
                "Normal distribution should have [normal, {mean}, {variance}] format"
            )
        return NormalDistribution(mean=params[0], variance=params[1])

    if kind == RANDOM:
        if len(params) != 2 or not all(_is_number(p) for p in params):
            raise InvalidRandomParams(
                "Random distribution should have [random, {min}, {max}] format"
            )
        if params[0] > params[1]:
            raise InvalidRandomParams(
                "Min cannot be greater than max for random distribution"
            )
        if not math.isfinite(float(params[1]) - float(params[0])):
            raise InvalidRandomParams(
                "Random distribution range is too large"
            )
        return UniformDistribution(min=params[0], max=params[1])

    raise InvalidDistributionKind(
        f"Supported distributions are: {', '.join(DISTRIBUTIONS)} (got {kind!r})"
    )
