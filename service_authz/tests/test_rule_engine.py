"""
Unit tests for the authorization rule engine.
"""

import pytest

from service_authz.app.rules import (
    AuthzConf,
    Principal,
    Rule,
    RuleEngine,
    authorized,
    evaluate,
    path_prefixes,
)
from shared.errors import ConfigError
from shared.metrics import MetricsCollector


def conf_with(*rules, enabled=True):
    return AuthzConf(enabled=enabled, rules=rules)


class TestPathPrefixes:
    """Test cases for path decomposition."""

    def test_nested_path(self):
        """Ancestors come most specific first."""
        assert path_prefixes("/a/b/c") == ["/a/b/c", "/a/b", "/a"]

    def test_single_segment(self):
        assert path_prefixes("/devices") == ["/devices"]

    def test_root(self):
        assert path_prefixes("/") == ["/"]

    def test_empty(self):
        assert path_prefixes("") == []

    def test_prefixes_are_ancestors(self):
        """Every prefix is a slash-delimited ancestor of the path."""
        resource = "/registry/devices/42/resources"
        for prefix in path_prefixes(resource):
            assert resource == prefix or resource.startswith(prefix + "/")


class TestRuleModel:
    """Test cases for rule parsing and checks."""

    def test_resources_alias(self):
        """Rules accept `resources` as well as `paths`."""
        rule = Rule.model_validate({"resources": ["/devices"], "methods": ["get"], "users": ["alice"]})

        assert rule.paths == frozenset(["/devices"])
        assert rule.methods == frozenset(["GET"])

    def test_deny_substrings_drop_empty(self):
        rule = Rule.model_validate({
            "paths": ["/"], "methods": ["GET"], "groups": ["g"],
            "denyPathSubstrings": ["", "/secret"],
        })

        assert rule.deny_path_substrings == ("/secret",)

    @pytest.mark.parametrize("data, message", [
        ({"methods": ["GET"], "users": ["alice"]}, "no resources"),
        ({"paths": ["/a"], "users": ["alice"]}, "no methods"),
        ({"paths": ["/a"], "methods": ["GET"]}, "at least one user"),
    ])
    def test_invalid_rules(self, data, message):
        """Rules missing paths, methods or principals are rejected."""
        with pytest.raises(ConfigError) as exc_info:
            Rule.model_validate(data).check(3)

        assert message in exc_info.value.message
        assert "#3" in exc_info.value.message

    def test_roles_alone_are_enough(self):
        Rule(paths=["/a"], methods=["GET"], roles=["admin"]).check()


class TestEvaluate:
    """Test cases for rule evaluation."""

    @pytest.fixture
    def devices_conf(self):
        """One rule granting alice GET on /devices."""
        return conf_with(Rule(paths=["/devices"], methods=["GET"], users=["alice"]))

    def test_child_path_allowed(self, devices_conf):
        assert authorized(devices_conf, "/devices/123", "GET", Principal(username="alice")) is True

    def test_other_method_denied(self, devices_conf):
        assert authorized(devices_conf, "/devices/123", "POST", Principal(username="alice")) is False

    def test_method_case_insensitive(self, devices_conf):
        assert authorized(devices_conf, "/devices/123", "get", Principal(username="alice")) is True

    def test_other_user_denied(self, devices_conf):
        result = evaluate(devices_conf, "/devices/123", "GET", Principal(username="bob"))

        assert result.allowed is False
        assert result.reason == "No applicable rules matched"

    def test_sibling_path_denied(self, devices_conf):
        """/devices-old is not under /devices."""
        assert authorized(devices_conf, "/devices-old/1", "GET", Principal(username="alice")) is False

    def test_most_specific_prefix_reported(self):
        conf = conf_with(Rule(paths=["/a", "/a/b"], methods=["GET"], users=["alice"]))

        result = evaluate(conf, "/a/b/c", "GET", Principal(username="alice"))

        assert result.allowed is True
        assert result.rule_index == 0
        assert result.matched_prefix == "/a/b"

    def test_first_matching_rule_wins(self):
        conf = conf_with(
            Rule(paths=["/a"], methods=["GET"], users=["bob"]),
            Rule(paths=["/a"], methods=["GET"], groups=["staff"]),
            Rule(paths=["/"], methods=["GET"], groups=["staff"]),
        )

        result = evaluate(conf, "/a/x", "GET", Principal(username="alice", groups=["staff"]))

        assert result.rule_index == 1

    def test_group_client_and_role_matches(self):
        conf = conf_with(
            Rule(paths=["/g"], methods=["GET"], groups=["admins"]),
            Rule(paths=["/c"], methods=["GET"], clients=["svc"]),
            Rule(paths=["/r"], methods=["GET"], roles=["operator"]),
        )

        assert authorized(conf, "/g/1", "GET", Principal(groups=["users", "admins"]))
        assert authorized(conf, "/c/1", "GET", Principal(client_id="svc"))
        assert authorized(conf, "/r/1", "GET", Principal(roles=["operator"]))
        assert not authorized(conf, "/r/1", "GET", Principal(groups=["operator"]))

    def test_deny_substring_vetoes_rule(self):
        """A vetoed rule never grants, but later rules still may."""
        conf = conf_with(
            Rule(paths=["/data"], methods=["GET"], users=["alice"], deny_path_substrings=["/private"]),
        )

        assert authorized(conf, "/data/public/1", "GET", Principal(username="alice"))
        assert not authorized(conf, "/data/private/1", "GET", Principal(username="alice"))

        conf = conf_with(
            Rule(paths=["/data"], methods=["GET"], users=["alice"], deny_path_substrings=["private"]),
            Rule(paths=["/data/private"], methods=["GET"], users=["alice"]),
        )
        result = evaluate(conf, "/data/private/1", "GET", Principal(username="alice"))
        assert result.allowed is True
        assert result.rule_index == 1

    def test_disabled_allows_everything(self):
        conf = conf_with(Rule(paths=["/a"], methods=["GET"], users=["bob"]), enabled=False)

        assert authorized(conf, "/anything", "DELETE", Principal()) is True

    def test_no_rules_denies(self):
        assert authorized(conf_with(), "/a", "GET", Principal(username="alice")) is False

    def test_anonymous_principal(self):
        conf = conf_with(Rule(paths=["/public"], methods=["GET"], groups=["anonymous"]))

        assert authorized(conf, "/public/docs", "GET", Principal.anonymous())
        assert not authorized(conf, "/private", "GET", Principal.anonymous())

    def test_pure(self, devices_conf):
        """Same inputs, same decision."""
        principal = Principal(username="alice")
        results = {evaluate(devices_conf, "/devices/1", "GET", principal) for _ in range(3)}

        assert len(results) == 1


class TestRuleEngine:
    """Test cases for RuleEngine."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("authz-test")

    def test_invalid_conf_rejected(self):
        """An enabled configuration is checked on construction."""
        with pytest.raises(ConfigError):
            RuleEngine(conf_with(Rule(paths=["/a"], methods=["GET"])))

    def test_disabled_conf_not_checked(self):
        engine = RuleEngine(conf_with(Rule(paths=["/a"], methods=["GET"]), enabled=False))

        assert engine.enabled is False

    def test_decisions_recorded(self, metrics):
        engine = RuleEngine(conf_with(Rule(paths=["/a"], methods=["GET"], users=["alice"])), metrics)

        assert engine.authorized("/a/1", "GET", Principal(username="alice"))
        assert not engine.authorized("/b", "GET", Principal(username="alice"))

        counter = metrics.get_metric("authz_decisions_total")
        assert counter.labels(decision="allow")._value.get() == 1
        assert counter.labels(decision="deny")._value.get() == 1

    def test_engine_stats(self):
        engine = RuleEngine(conf_with(
            Rule(paths=["/a", "/b"], methods=["GET"], users=["alice"]),
            Rule(paths=["/a"], methods=["PUT"], users=["alice"]),
        ))

        stats = engine.get_engine_stats()

        assert stats == {"enabled": True, "total_rules": 2, "paths": ["/a", "/b"]}
