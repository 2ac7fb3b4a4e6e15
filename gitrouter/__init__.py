"""GitRouter: rule-based review routing and escalation for GitHub pull requests."""

__version__ = "0.1.0"
