"""
Rule evaluation engine for path-based authorization.
"""

from typing import List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .models import AuthzConf, EvaluationResult, Principal, Rule


def path_prefixes(resource: str) -> List[str]:
    """Decompose a resource path into its ancestors, most specific first.

    /a/b/c -> [/a/b/c, /a/b, /a]
    /      -> [/]
    """
    if not resource:
        return []
    segments = resource.lstrip("/").split("/")
    return ["/" + "/".join(segments[:i]) for i in range(len(segments), 0, -1)]


def _vetoed(rule: Rule, resource: str) -> bool:
    return any(substring in resource for substring in rule.deny_path_substrings)


def _principal_matches(rule: Rule, principal: Principal) -> bool:
    if principal.username and principal.username in rule.users:
        return True
    if principal.client_id and principal.client_id in rule.clients:
        return True
    if rule.groups & principal.groups:
        return True
    return bool(rule.roles & principal.roles)


def evaluate(conf: AuthzConf, resource: str, method: str, principal: Principal) -> EvaluationResult:
    """Decide whether ``principal`` may call ``method`` on ``resource``.

    Pure: no I/O and no mutation. Rules are tried in configured order and,
    within a rule, prefixes from most to least specific; the first match
    grants access.
    """
    if not conf.enabled:
        return EvaluationResult(allowed=True, reason="Authorization disabled")

    method = method.upper()
    prefixes = path_prefixes(resource)

    for index, rule in enumerate(conf.rules):
        if _vetoed(rule, resource):
            continue
        if method not in rule.methods or not _principal_matches(rule, principal):
            continue
        for prefix in prefixes:
            if prefix in rule.paths:
                return EvaluationResult(
                    allowed=True,
                    reason=f"Rule #{index} matched {prefix}",
                    rule_index=index,
                    matched_prefix=prefix,
                )

    return EvaluationResult(allowed=False, reason="No applicable rules matched")


def authorized(conf: AuthzConf, resource: str, method: str, principal: Principal) -> bool:
    """Boolean shortcut for :func:`evaluate`."""
    return evaluate(conf, resource, method, principal).allowed


class RuleEngine:
    """Rule evaluation engine bound to one immutable configuration."""

    def __init__(self, conf: AuthzConf, metrics: Optional[MetricsCollector] = None):
        if conf.enabled:
            conf.check()
        self.conf = conf
        self.metrics = metrics
        self.logger = get_logger("auth.rule_engine")

    @property
    def enabled(self) -> bool:
        return self.conf.enabled

    def evaluate(self, resource: str, method: str, principal: Principal) -> EvaluationResult:
        """Evaluate rules and record the decision."""
        result = evaluate(self.conf, resource, method, principal)

        self.logger.debug(
            "Rule evaluation result",
            resource=resource,
            method=method,
            username=principal.username,
            allowed=result.allowed,
            reason=result.reason
        )
        if self.metrics is not None:
            self.metrics.record_authz_decision(result.allowed)

        return result

    def authorized(self, resource: str, method: str, principal: Principal) -> bool:
        """Check whether a principal may access the resource with the method."""
        return self.evaluate(resource, method, principal).allowed

    def get_engine_stats(self):
        """Get engine statistics."""
        return {
            "enabled": self.conf.enabled,
            "total_rules": len(self.conf.rules),
            "paths": sorted({path for rule in self.conf.rules for path in rule.paths}),
        }
