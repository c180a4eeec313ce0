"""
Setup configuration for orbcast package.
"""

from setuptools import setup, find_packages

setup(
    name="orbcast",
    version="0.1.0",
    description="Retrieval-augmented ad performance prediction",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "numpy",
        "python-dotenv",
        "pyyaml",
        "google-genai",
        "tenacity",
        "logfire",
        "click",
        "tqdm",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "orbcast=orbcast.cli.main:cli",
        ],
    },
)
