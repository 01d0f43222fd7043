"""Digest strategies: which candidate items make up a strategy's digest.

A strategy is one of a closed set of kinds. Each has a canonical string form,
``TOP_N#10`` or ``POINT_THRESHOLD#500``, used in storage keys, subscriber
records and subscribe requests. Only values listed in ``StrategyConfig`` are
accepted when parsing.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from hndigest.core.exceptions import InvalidStrategyError

TOP_N_PREFIX = "TOP_N#"
POINT_THRESHOLD_PREFIX = "POINT_THRESHOLD#"


class TopN(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["top_n"] = "top_n"
    n: int

    def __str__(self) -> str:
        return f"{TOP_N_PREFIX}{self.n}"

    def describe(self) -> str:
        return f"the top {self.n} stories"


class PointThreshold(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["point_threshold"] = "point_threshold"
    threshold: int

    def __str__(self) -> str:
        return f"{POINT_THRESHOLD_PREFIX}{self.threshold}"

    def describe(self) -> str:
        return f"every story with {self.threshold}+ points"


DigestStrategy = Annotated[Union[TopN, PointThreshold], Field(discriminator="kind")]


def _check_values(values: tuple[int, ...], name: str) -> tuple[int, ...]:
    if not values:
        raise ValueError(f"{name} must not be empty")
    if any(v <= 0 for v in values):
        raise ValueError(f"{name} must be positive integers, got {values}")
    if len(set(values)) != len(values):
        raise ValueError(f"{name} contains duplicates: {values}")
    return values


class StrategyConfig(BaseModel):
    """The fixed set of strategies offered. Built once at startup."""

    model_config = ConfigDict(frozen=True)

    top_n_values: tuple[int, ...] = (10, 20, 50)
    point_threshold_values: tuple[int, ...] = (500, 250, 100)

    @field_validator("top_n_values")
    @classmethod
    def _top_n(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        return _check_values(v, "top_n_values")

    @field_validator("point_threshold_values")
    @classmethod
    def _thresholds(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        return _check_values(v, "point_threshold_values")

    @property
    def max_top_n(self) -> int:
        return max(self.top_n_values)

    @property
    def min_point_threshold(self) -> int:
        return min(self.point_threshold_values)

    def all_strategies(self) -> list[TopN | PointThreshold]:
        return [TopN(n=n) for n in self.top_n_values] + [
            PointThreshold(threshold=t) for t in self.point_threshold_values
        ]

    def parse(self, raw: str | None) -> TopN | PointThreshold:
        """Parse the canonical form. Raises InvalidStrategyError for anything else."""
        s = (raw or "").strip()
        if s.startswith(TOP_N_PREFIX):
            n = _parse_int(s[len(TOP_N_PREFIX):], s)
            if n not in self.top_n_values:
                raise InvalidStrategyError(
                    f"Invalid TOP_N value: {n}. Valid values are: {list(self.top_n_values)}"
                )
            return TopN(n=n)
        if s.startswith(POINT_THRESHOLD_PREFIX):
            t = _parse_int(s[len(POINT_THRESHOLD_PREFIX):], s)
            if t not in self.point_threshold_values:
                raise InvalidStrategyError(
                    f"Invalid POINT_THRESHOLD value: {t}. Valid values are: {list(self.point_threshold_values)}"
                )
            return PointThreshold(threshold=t)
        raise InvalidStrategyError(f"Invalid strategy format: {s!r}")


def _parse_int(text: str, whole: str) -> int:
    # int() accepts "+5" and " 5"; the canonical form does not
    if not (text.isascii() and text.isdigit()):
        raise InvalidStrategyError(f"Invalid strategy format: {whole!r}")
    return int(text)
