#!/usr/bin/env python3
"""Setup script for survey-load-test."""

from setuptools import setup, find_packages

setup(
    name="survey-load-test",
    version="0.1.0",
    description="Synthetic load generator for the survey web API",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "gevent>=23.9.0",
        "locust>=2.20.0",
        "requests>=2.28.0",
        "PyYAML>=6.0",
        "matplotlib>=3.7.0",
        "jinja2>=3.1.0",
        "tabulate>=0.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "survey-load-test=engine.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
