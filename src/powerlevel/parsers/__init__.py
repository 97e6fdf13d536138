"""Plan file parsers."""

from powerlevel.parsers.plan import PlanDocument, PlanParseError, parse_plan, parse_plan_file

__all__ = ["PlanDocument", "PlanParseError", "parse_plan", "parse_plan_file"]
