"""Setup configuration for api-scenario tool."""

from setuptools import setup, find_packages

setup(
    name="api-scenario",
    version="0.1.0",
    description="Declarative API scenario runner for YAML and Markdown test files",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "requests>=2.31.0",
        "pyyaml>=6.0",
        "click>=8.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "api-scenario=api_scenario.cli:main",
        ],
    },
)
