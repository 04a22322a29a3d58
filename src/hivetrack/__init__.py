"""Hivetrack - lifecycle and hierarchy tracking for coding agents.

Ingests hook events posted by CLI coding assistants, reconstructs which
session spawned which sub-agent, and keeps an authoritative state machine
for every agent with periodic cleanup of hung and misdetected ones.
"""

__version__ = "0.1.0"
