"""Loopwright - an autonomous plan/command agent loop."""

__version__ = "0.1.0"

from loopwright.agent import Agent, AgentState, StagedTool
from loopwright.config import Config
from loopwright.logging import configure_logging

__all__ = ["Agent", "AgentState", "Config", "StagedTool", "configure_logging", "__version__"]
