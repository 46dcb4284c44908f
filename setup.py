"""Setup script for the AgentGate package."""

from setuptools import setup, find_packages

setup(
    name="agentgate",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.2",
        "prometheus-client>=0.19",
    ],
    extras_require={
        "test": ["pytest>=7.4"],
    },
    description="AgentGate - Capability routing and safety gating for multi-agent systems",
    author="AgentGate Team",
)
