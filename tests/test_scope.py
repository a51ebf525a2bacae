"""Unit tests for scope resolution and counter key derivation."""

from reqthrottle.schemas.policy import RateLimitPeriod, ThrottlePolicy
from reqthrottle.services.scope import RequestDescriptor, RequestScope, derive_key, resolve_scope


def _scope(**overrides) -> RequestScope:
    base = {
        "client_ip": "203.0.113.9",
        "client_key": "anon",
        "endpoint": "/api/values",
        "user_agent": "curl/8.0",
    }
    base.update(overrides)
    return RequestScope(**base)


class TestResolveScope:
    def test_normalizes_fields(self) -> None:
        scope = resolve_scope(
            RequestDescriptor(
                client_ip="203.0.113.9:51234",
                is_authenticated=True,
                endpoint="/API/Values",
                user_agent="Mozilla/5.0",
            )
        )

        assert scope == RequestScope(
            client_ip="203.0.113.9",
            client_key="auth",
            endpoint="/api/values",
            user_agent="Mozilla/5.0",
        )

    def test_anonymous_client_key(self) -> None:
        scope = resolve_scope(RequestDescriptor("10.0.0.1", False, "/"))

        assert scope.client_key == "anon"
        assert scope.user_agent is None

    def test_ipv6_is_canonicalized(self) -> None:
        scope = resolve_scope(RequestDescriptor("[2001:0db8:0000::0001]:443", False, "/"))

        assert scope.client_ip == "2001:db8::1"

    def test_unparseable_ip_falls_back_to_raw(self) -> None:
        scope = resolve_scope(RequestDescriptor("testclient", False, "/"))

        assert scope.client_ip == "testclient"


class TestDeriveKey:
    def test_is_stable(self) -> None:
        policy = ThrottlePolicy.from_limits(per_second=1, ip_throttling=True)

        assert derive_key(_scope(), policy, RateLimitPeriod.SECOND) == derive_key(
            _scope(), policy, RateLimitPeriod.SECOND
        )

    def test_is_a_sha256_hex_digest(self) -> None:
        policy = ThrottlePolicy.from_limits(per_second=1)
        key = derive_key(_scope(), policy, RateLimitPeriod.SECOND)

        assert len(key) == 64
        int(key, 16)

    def test_period_changes_key(self) -> None:
        policy = ThrottlePolicy.from_limits(per_second=1, per_minute=5, ip_throttling=True)

        assert derive_key(_scope(), policy, RateLimitPeriod.SECOND) != derive_key(
            _scope(), policy, RateLimitPeriod.MINUTE
        )

    def test_endpoint_participates_only_when_enabled(self) -> None:
        enabled = ThrottlePolicy.from_limits(per_second=1, endpoint_throttling=True)
        disabled = ThrottlePolicy.from_limits(per_second=1)
        first = _scope(endpoint="/api/values")
        second = _scope(endpoint="/api/other")

        assert derive_key(first, enabled, RateLimitPeriod.SECOND) != derive_key(
            second, enabled, RateLimitPeriod.SECOND
        )
        assert derive_key(first, disabled, RateLimitPeriod.SECOND) == derive_key(
            second, disabled, RateLimitPeriod.SECOND
        )

    def test_each_flag_selects_its_field(self) -> None:
        period = RateLimitPeriod.MINUTE
        cases = [
            ("ip_throttling", {"client_ip": "198.51.100.1"}),
            ("client_throttling", {"client_key": "auth"}),
            ("user_agent_throttling", {"user_agent": "python-httpx"}),
        ]
        for flag, change in cases:
            policy = ThrottlePolicy.from_limits(per_minute=1, **{flag: True})

            assert derive_key(_scope(), policy, period) != derive_key(_scope(**change), policy, period), flag

    def test_field_boundaries_cannot_collide(self) -> None:
        policy = ThrottlePolicy.from_limits(per_second=1, endpoint_throttling=True, user_agent_throttling=True)
        first = _scope(endpoint="/a_b", user_agent="c")
        second = _scope(endpoint="/a", user_agent="b_c")

        assert derive_key(first, policy, RateLimitPeriod.SECOND) != derive_key(
            second, policy, RateLimitPeriod.SECOND
        )
