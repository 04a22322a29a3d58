"""
Hivetrack Agents Module.

Authoritative lifecycle tracking for agents and sub-agents.

Components:
- AgentRegistry: state machine, hierarchy queries and maintenance sweeps
- DetectionBridge: feeds agents detected in terminal output into the registry

Usage:
    from hivetrack.agents import AgentRegistry

    registry = AgentRegistry(agent_manager, hook_server)
    registry.init()
    agent = registry.spawn("reviewer", cwd="/repo")
"""

from hivetrack.agents.detection import DetectionBridge
from hivetrack.agents.registry import (
    AgentRegistry,
    AgentStats,
    AgentTreeNode,
    can_transition,
    get_agent_registry,
    set_agent_registry,
)

__all__ = [
    "AgentRegistry",
    "AgentStats",
    "AgentTreeNode",
    "DetectionBridge",
    "can_transition",
    "get_agent_registry",
    "set_agent_registry",
]
