"""Retry backoff policies for webhook subscriptions.

A policy is chosen when a subscription is written and parsed exactly once
into one of two tagged variants:

- ``FixedBackoff``: every retry waits ``delay`` seconds.
- ``ExponentialBackoff``: retry n waits ``min(cap, base * factor ** (n - 1))``
  seconds; jitter is added on top but the result never exceeds ``ceiling``.

The legacy string forms ``exponential:<base>,<cap>[,<ceiling>]`` and
``fixed:<delay>`` are accepted at write time and never re-parsed per attempt.
"""

from __future__ import annotations

import random
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import ValidationError

# Hard upper bound for any single retry delay (one day)
MAX_DELAY_SECONDS = 86400.0


class FixedBackoff(BaseModel):
    """Constant delay between retries."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["fixed"] = "fixed"
    delay: float = Field(gt=0, le=MAX_DELAY_SECONDS, description="Seconds between retries")

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the retry that follows ``attempt``."""
        return self.delay

    def upper_bound(self) -> float:
        """Largest delay this policy may ever schedule."""
        return MAX_DELAY_SECONDS

    def to_spec(self) -> str:
        """Render the policy in its compact string form."""
        return f"fixed:{_fmt(self.delay)}"


class ExponentialBackoff(BaseModel):
    """Exponential delay growth, capped per retry and bounded by a ceiling.

    Attributes:
        base: Delay before the first retry, in seconds.
        cap: Maximum deterministic delay for any retry.
        ceiling: Absolute bound on a scheduled delay, jitter included.
        factor: Growth multiplier between consecutive retries.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["exponential"] = "exponential"
    base: float = Field(gt=0, le=MAX_DELAY_SECONDS)
    cap: float = Field(gt=0, le=MAX_DELAY_SECONDS)
    ceiling: float = Field(gt=0, le=MAX_DELAY_SECONDS)
    factor: float = Field(default=2.0, ge=1.0, le=10.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> ExponentialBackoff:
        if self.cap < self.base:
            raise ValueError(f"cap ({_fmt(self.cap)}) must be >= base ({_fmt(self.base)})")
        if self.ceiling < self.cap:
            raise ValueError(
                f"ceiling ({_fmt(self.ceiling)}) must be >= cap ({_fmt(self.cap)})"
            )
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the retry that follows ``attempt``.

        Non-decreasing in ``attempt`` and never above ``cap``.
        """
        exponent = max(attempt, 1) - 1
        # Stop growing once the cap is reached; avoids float overflow on large attempts
        delay = self.base
        for _ in range(exponent):
            delay *= self.factor
            if delay >= self.cap:
                return self.cap
        return min(self.cap, delay)

    def upper_bound(self) -> float:
        """Largest delay this policy may ever schedule."""
        return self.ceiling

    def to_spec(self) -> str:
        """Render the policy in its compact string form."""
        spec = f"exponential:{_fmt(self.base)},{_fmt(self.cap)},{_fmt(self.ceiling)}"
        if self.factor != 2.0:
            spec += f",{_fmt(self.factor)}"
        return spec


BackoffPolicy = Annotated[FixedBackoff | ExponentialBackoff, Field(discriminator="kind")]

_policy_adapter: TypeAdapter[FixedBackoff | ExponentialBackoff] = TypeAdapter(BackoffPolicy)

DEFAULT_BACKOFF = ExponentialBackoff(base=2, cap=60, ceiling=3600)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _parse_numbers(raw: str) -> list[float]:
    try:
        return [float(part) for part in raw.split(",") if part.strip() != ""]
    except ValueError:
        raise ValueError(f"non-numeric parameter in {raw!r}") from None


def coerce_backoff(value: Any) -> FixedBackoff | ExponentialBackoff:
    """Turn a policy descriptor into a tagged policy.

    Accepts an existing policy, a mapping with a ``kind`` tag, or the
    compact string form. Raises ValueError for anything else.
    """
    if isinstance(value, FixedBackoff | ExponentialBackoff):
        return value

    if isinstance(value, dict):
        try:
            return _policy_adapter.validate_python(value)
        except PydanticValidationError as e:
            first = e.errors()[0]
            message = first.get("msg", "invalid backoff policy").removeprefix("Value error, ")
            raise ValueError(message) from None

    if not isinstance(value, str):
        raise ValueError("backoff policy must be a string or an object with a 'kind'")

    kind, sep, params = value.strip().partition(":")
    kind = kind.strip().lower()
    if not sep:
        raise ValueError(f"backoff policy {value!r} is missing parameters")

    numbers = _parse_numbers(params)

    try:
        if kind == "fixed":
            if len(numbers) != 1:
                raise ValueError("fixed backoff takes exactly one parameter: delay")
            return FixedBackoff(delay=numbers[0])

        if kind == "exponential":
            if len(numbers) == 2:
                base, cap = numbers
                return ExponentialBackoff(base=base, cap=cap, ceiling=cap)
            if len(numbers) == 3:
                base, cap, ceiling = numbers
                return ExponentialBackoff(base=base, cap=cap, ceiling=ceiling)
            if len(numbers) == 4:
                base, cap, ceiling, factor = numbers
                return ExponentialBackoff(base=base, cap=cap, ceiling=ceiling, factor=factor)
            raise ValueError("exponential backoff takes base,cap[,ceiling[,factor]]")
    except PydanticValidationError as e:
        first = e.errors()[0]
        message = first.get("msg", "invalid backoff policy").removeprefix("Value error, ")
        raise ValueError(message) from None

    raise ValueError(f"unknown backoff family {kind!r}")


def parse_backoff(value: Any) -> FixedBackoff | ExponentialBackoff:
    """Parse a backoff descriptor, raising a Courier ValidationError on failure.

    Example:
        ```python
        policy = parse_backoff("exponential:2,60,3600")
        policy.delay_for(1)  # 2.0
        policy.delay_for(6)  # 60.0 (capped)
        ```
    """
    try:
        return coerce_backoff(value)
    except ValueError as e:
        raise ValidationError("retry_backoff", str(e)) from None


def next_delay(
    policy: FixedBackoff | ExponentialBackoff,
    attempt: int,
    jitter_ratio: float = 0.0,
    retry_after: float | None = None,
    rng: random.Random | None = None,
) -> float:
    """Compute the delay before the retry that follows ``attempt``.

    Adds up to ``jitter_ratio * delay`` of random jitter so many failing
    subscriptions don't retry in lockstep. A receiver's Retry-After raises
    the delay to at least that value. The result never exceeds the
    policy's upper bound.

    Args:
        policy: Backoff policy of the subscription.
        attempt: The attempt number that just failed (1-based).
        jitter_ratio: Maximum jitter as a fraction of the delay.
        retry_after: Seconds requested by the receiver, if any.
        rng: Random source (defaults to the module-level generator).

    Returns:
        Delay in seconds.
    """
    delay = policy.delay_for(attempt)
    if retry_after is not None and retry_after > delay:
        delay = retry_after
    if jitter_ratio > 0:
        source = rng if rng is not None else random
        delay += source.uniform(0, jitter_ratio * delay)
    return min(policy.upper_bound(), delay)


__all__ = [
    "DEFAULT_BACKOFF",
    "MAX_DELAY_SECONDS",
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "coerce_backoff",
    "next_delay",
    "parse_backoff",
]
