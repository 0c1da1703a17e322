"""
Rules Engine Parser Package

Exports parser classes for parsing rule definitions.
"""

from .rule_parser import RuleParser, parse_time_window

__all__ = ["RuleParser", "parse_time_window"]
