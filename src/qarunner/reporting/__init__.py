"""Run summary generation and per-step optimization suggestions."""

from .suggestions import OptimizationAdvisor, heuristic_suggestion
from .summary import SummaryWriter, fallback_summary, parse_summary

__all__ = ["OptimizationAdvisor", "SummaryWriter", "fallback_summary", "heuristic_suggestion", "parse_summary"]
