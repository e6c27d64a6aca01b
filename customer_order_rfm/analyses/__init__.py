"""Analyses built on top of the canonical order list."""

from .agents import (
    UNASSIGNED_AGENT,
    AgentSummary,
    CustomerAgentHistory,
    agent_history,
    summarize_agents,
)

__all__ = [
    "AgentSummary",
    "CustomerAgentHistory",
    "UNASSIGNED_AGENT",
    "agent_history",
    "summarize_agents",
]
