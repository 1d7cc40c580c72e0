"""
Rules engine package.

Defines the principal and rule models and the evaluation algorithm used to
authorize requests against hierarchical resource paths.

Modules of interest:
- models: Principal, Rule, AuthzConf and EvaluationResult.
- engine: Prefix decomposition and the first-match-grants evaluation.
"""

from .engine import RuleEngine, authorized, evaluate, path_prefixes
from .models import ANONYMOUS_GROUP, AuthzConf, EvaluationResult, Principal, Rule

__all__ = [
    "ANONYMOUS_GROUP",
    "AuthzConf",
    "EvaluationResult",
    "Principal",
    "Rule",
    "RuleEngine",
    "authorized",
    "evaluate",
    "path_prefixes",
]
