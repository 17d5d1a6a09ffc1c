"""Rules package."""

from diff_review.rules.base import Finding, Rule
from diff_review.rules.engine import RulesEngine

__all__ = ["Finding", "Rule", "RulesEngine"]
