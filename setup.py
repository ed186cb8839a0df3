"""Setup file for development installation."""

from setuptools import setup, find_namespace_packages

setup(
    name="ai-chat",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["ai_chat*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110",
        "httpx>=0.27",
        "opentelemetry-instrumentation-fastapi>=0.45b0",
        "prometheus-client>=0.20",
        "pydantic>=2.5",
        "SQLAlchemy>=2.0",
        "structlog>=24.1",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "ai-chat=ai_chat.main:main",
        ],
    },
)
