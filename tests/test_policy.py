"""Unit tests for the throttle policy model."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from reqthrottle.core.errors import ValidationAppError
from reqthrottle.schemas.policy import (
    EndpointThrottlingType,
    RateLimitPeriod,
    RateLimits,
    ThrottlePolicy,
    load_policy,
)


def test_period_durations() -> None:
    assert [period.seconds for period in RateLimitPeriod] == [1, 60, 3600, 86400, 604800]


def test_rate_limits_lookup_defaults_to_zero() -> None:
    limits = RateLimits(per_minute=30)

    assert limits.get_limit(RateLimitPeriod.MINUTE) == 30
    assert limits.get_limit(RateLimitPeriod.SECOND) == 0
    assert limits.get_limit(RateLimitPeriod.WEEK) == 0


def test_rate_limits_reject_negative_values() -> None:
    with pytest.raises(ValidationError):
        RateLimits(per_second=-1)


def test_from_limits_skips_unset_periods() -> None:
    policy = ThrottlePolicy.from_limits(per_second=1, per_hour=600, ip_throttling=True)

    assert dict(policy.rates) == {RateLimitPeriod.SECOND: 1, RateLimitPeriod.HOUR: 600}
    assert policy.ip_throttling is True
    assert policy.endpoint_type is EndpointThrottlingType.ABSOLUTE_PATH


def test_rates_are_required() -> None:
    with pytest.raises(ValidationError):
        ThrottlePolicy(rates={})


def test_rates_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        ThrottlePolicy(rates={RateLimitPeriod.MINUTE: 0})


def test_rates_are_sorted_by_duration() -> None:
    policy = ThrottlePolicy(rates={"day": 100, "second": 1, "minute": 10})

    assert list(policy.rates) == [RateLimitPeriod.SECOND, RateLimitPeriod.MINUTE, RateLimitPeriod.DAY]


def test_ordered_periods_ascending_by_default() -> None:
    policy = ThrottlePolicy.from_limits(per_second=1, per_minute=10, per_week=1000)

    assert policy.ordered_periods() == [
        (RateLimitPeriod.SECOND, 1),
        (RateLimitPeriod.MINUTE, 10),
        (RateLimitPeriod.WEEK, 1000),
    ]


def test_ordered_periods_descending_when_stacking() -> None:
    policy = ThrottlePolicy.from_limits(per_second=1, per_minute=10, stack_blocked_requests=True)

    assert policy.ordered_periods() == [(RateLimitPeriod.MINUTE, 10), (RateLimitPeriod.SECOND, 1)]


def test_policy_is_immutable() -> None:
    policy = ThrottlePolicy.from_limits(per_second=1)

    with pytest.raises(ValidationError):
        policy.ip_throttling = True


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(ValidationError):
        ThrottlePolicy(rates={"second": 1}, ip_throtling=True)


class TestLoadPolicy:
    def test_loads_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(
            json.dumps(
                {
                    "rates": {"second": 1, "minute": 10},
                    "ip_throttling": True,
                    "ip_rules": {"192.168.2.1": {"per_minute": 30}},
                    "ip_whitelist": ["127.0.0.1", "192.168.0.0/24"],
                    "endpoint_throttling": True,
                    "endpoint_type": "controller_and_action",
                    "endpoint_rules": {"api/values": {"per_second": 4}},
                }
            ),
            encoding="utf-8",
        )

        policy = load_policy(path)

        assert policy.rates[RateLimitPeriod.MINUTE] == 10
        assert policy.ip_rules["192.168.2.1"].get_limit(RateLimitPeriod.MINUTE) == 30
        assert policy.endpoint_type is EndpointThrottlingType.CONTROLLER_AND_ACTION
        assert policy.ip_whitelist == ["127.0.0.1", "192.168.0.0/24"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            load_policy(tmp_path / "missing.json")

        assert exc_info.value.code == "policy_file_unreadable"

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValidationAppError) as exc_info:
            load_policy(path)

        assert exc_info.value.code == "invalid_policy"

    def test_invalid_policy(self, tmp_path: Path) -> None:
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"rates": {}}), encoding="utf-8")

        with pytest.raises(ValidationAppError) as exc_info:
            load_policy(path)

        assert exc_info.value.code == "invalid_policy"
