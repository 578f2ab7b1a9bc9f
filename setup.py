#!/usr/bin/env python3
"""
Recon Phantom v1.0.0 - Setup Configuration
==========================================

Application-layer reconnaissance toolkit: port scanning, service
identification, OS inference, firewall analysis and security scripts.

Installation:
    python setup.py install

    OR (development mode):
    pip install -e .

    Creates 'rp' console script alias globally.

Author: Recon Phantom Team
License: MIT
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read long description from README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# Core dependencies
REQUIRED_PACKAGES = [
    "requests>=2.28.0",     # HTTP probes and DNS-over-HTTPS
    "urllib3>=1.26.0",      # Connection error classification
    "jsonschema>=4.0.0",    # Configuration validation
    "colorama>=0.4.4",      # Cross-platform colored output
]

# Optional development dependencies
EXTRAS_REQUIRE = {
    "dev": [
        "pytest>=7.0.0",    # Testing
        "pytest-cov>=4.0.0", # Coverage reporting
        "black>=22.0.0",    # Code formatting
        "pylint>=2.14.0",   # Linting
        "mypy>=0.950",      # Type checking
    ],
}

setup(
    # Package Information
    name="recon-phantom",
    version="1.0.0",
    author="Recon Phantom Team",
    description="Application-layer reconnaissance toolkit for authorized security testing",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Classification
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Information Technology",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet",
        "Topic :: System :: Networking",
        "Topic :: System :: Networking :: Monitoring",
        "Topic :: Security",
    ],

    # Keywords for searching
    keywords=[
        "network",
        "reconnaissance",
        "fingerprinting",
        "os-detection",
        "service-detection",
        "firewall-detection",
        "penetration-testing",
        "network-scanning",
        "security",
    ],

    # Package Configuration
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),

    # Python Version Requirement
    python_requires=">=3.8",

    # Dependencies
    install_requires=REQUIRED_PACKAGES,
    extras_require=EXTRAS_REQUIRE,

    # Entry Points (Console Scripts)
    entry_points={
        "console_scripts": [
            "rp=recon_phantom.cli:main",
        ],
    },

    license="MIT",
    zip_safe=False,
)
