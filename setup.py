"""Setup script for the AutoGenSocial content orchestrator."""

from setuptools import find_namespace_packages, setup

setup(
    name="autogensocial",
    version="0.1.0",
    packages=find_namespace_packages(include=["autogensocial", "autogensocial.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "prometheus-client>=0.20",
        "httpx>=0.27",
        "asyncpg>=0.29",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="AutoGenSocial - agent-driven social media content orchestration",
    author="AutoGenSocial Team",
)
