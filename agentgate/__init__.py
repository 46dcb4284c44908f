"""AgentGate - capability routing and safety gating for multi-agent systems."""

__version__ = "0.1.0"
