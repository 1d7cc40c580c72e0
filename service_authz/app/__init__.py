"""
Authorization package.

Holds the rule-based access control used by the inbound validation gate.
Evaluation is in-memory and side-effect free; configuration is loaded once
at startup and never mutated.
"""
