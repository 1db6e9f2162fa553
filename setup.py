"""
Mission Control - State Engine
Authoritative mission/task/artifact store with safety and evidence gates
"""

from setuptools import find_packages, setup

setup(
    name="mission-control",
    version="0.8.0",
    description="Mission Control - gated state engine for autonomous agent missions",
    author="Mission Control Development Team",
    packages=find_packages(exclude=["tests*", "docs*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "aiosqlite>=0.19.0",
        "networkx>=3.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "mypy>=1.5.0",
            "black>=23.9.0",
            "ruff>=0.0.290",
            "pylint>=2.17.0",
            "bandit>=1.7.0",
        ],
    },
)
