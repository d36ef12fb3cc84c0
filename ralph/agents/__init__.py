"""Agent integrations."""

from ralph.agents.claude import AgentOutcome, ClaudeAgent, OutcomeKind, detect_rate_limit

__all__ = ["AgentOutcome", "ClaudeAgent", "OutcomeKind", "detect_rate_limit"]
