"""
Setup configuration for funnelcms package.
"""

from setuptools import setup, find_packages

setup(
    name="funnelcms",
    version="1.0.0",
    description="Marketing site content management with a RAG research intelligence workspace",
    packages=find_packages(include=["funnelcms", "funnelcms.*"]),
    package_data={"funnelcms": ["funnels/*.yml"]},
    python_requires=">=3.9",
    install_requires=[
        "supabase>=2.0.0",
        "openai>=1.0.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "slowapi>=0.1.9",
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "logfire[fastapi]>=0.50.0",
        "httpx>=0.25.0",
        "tenacity>=8.2.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fcms=funnelcms.cli.main:cli",
        ],
    },
)
