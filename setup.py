"""Setup script for the toolforge package."""

from setuptools import setup, find_packages

setup(
    name="toolforge",
    version="0.1.0",
    packages=find_packages(include=["toolforge", "toolforge.*"]),
    python_requires=">=3.10",
    install_requires=[
        "langchain-core>=0.3",
        "langgraph>=0.3",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.1",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    description="toolforge - tool-call reconciliation and execution for multi-agent graphs",
    author="NeuraForge Team",
)
