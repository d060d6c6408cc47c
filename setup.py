#!/usr/bin/env python3
"""
Setup script for CommerceFlow.
This file enables installation and packaging of the engine, the CLI and the web backend.
"""

import os
from setuptools import setup, find_packages

# Read requirements from requirements.txt
here = os.path.abspath(os.path.dirname(__file__))
requirements_path = os.path.join(here, 'requirements.txt')

install_requires = []
if os.path.exists(requirements_path):
    with open(requirements_path, 'r') as f:
        for line in f:
            # Skip empty lines and comments
            line = line.strip()
            if line and not line.startswith('#'):
                install_requires.append(line)

setup(
    name="commerceflow",
    version="0.1.0",
    description="Visual automation flows and chat-driven API planning for a commerce admin.",
    long_description=open(os.path.join(here, 'README.md'), 'r').read() if os.path.exists(os.path.join(here, 'README.md')) else "Visual automation flows and chat-driven API planning for a commerce admin.",
    packages=find_packages(include=["commerceflow", "commerceflow.*", "web", "web.*"]),
    install_requires=install_requires,
    extras_require={
        "test": ["pytest>=7"],
        "llm": ["abstractcore"],
    },
    python_requires='>=3.9',
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    entry_points={
        'console_scripts': [
            'commerceflow=commerceflow.cli:main',
        ],
    },
)
