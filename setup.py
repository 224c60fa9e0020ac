#!/usr/bin/env python3
"""
Setup script for Nod Camera
"""

from pathlib import Path

from setuptools import find_packages, setup

HERE = Path(__file__).parent


def read_requirements():
    """Read runtime requirements from requirements.txt"""
    lines = (HERE / "requirements.txt").read_text().splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


setup(
    name="nodcam",
    version="0.1.0",
    description="PTZ camera that answers yes/no questions by nodding or shaking its head",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=read_requirements(),
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "nodcam=nodcam.main:cli",
        ],
    },
)
