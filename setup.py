from setuptools import setup, find_packages

setup(
    name="stripe-sync",
    version="0.1.0",
    description="Stripe webhook ingestion and KV cache synchronization",
    author="Fluxtopus Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "stripe>=8.0.0",
        "structlog>=23.2.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "redis>=5.0.1",
        "fastapi>=0.104.1",
        "uvicorn[standard]>=0.24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.2",
        ],
    },
    entry_points={
        "console_scripts": [
            "stripe-sync=stripe_sync.app:main",
        ],
    },
    python_requires=">=3.11",
)
