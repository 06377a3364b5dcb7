"""okrpilot: LLM-assisted reconciliation for personal OKR trackers."""

__version__ = "0.1.0"
