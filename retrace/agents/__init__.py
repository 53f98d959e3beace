"""
Agents module exports.
"""

from retrace.agents.action_decider import OpenAIActionDecider

__all__ = [
    "OpenAIActionDecider",
]
