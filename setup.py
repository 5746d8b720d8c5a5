"""Setup for Token Tracker."""

from setuptools import setup

setup(
    name="token-tracker",
    version="0.1.0",
    description="Multi-provider API usage and billing dashboard backend",
    python_requires=">=3.10",
    py_modules=[
        "codec",
        "config",
        "errors",
        "identity",
        "keystore",
        "rate_limiter",
        "server",
        "service",
    ],
    packages=["providers"],
    install_requires=[
        "requests",
        "keyring",
        "cryptography",
        "fastapi",
        "pydantic>=2",
        "uvicorn",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        "console_scripts": ["token-tracker=server:main"],
    },
)
