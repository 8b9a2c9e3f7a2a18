#!/usr/bin/env python
"""Azure CLI Extension: az nucleus (Azure IaC validation, deployment and post-deployment)."""

from setuptools import find_packages, setup

VERSION = "0.1.0b1"
CLASSIFIERS = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "License :: OSI Approved :: MIT License",
]

DEPENDENCIES = [
    "knack>=0.11.0",
    "pyyaml>=6.0",
    "rich>=13.0.0",
]

TEST_DEPENDENCIES = [
    "pytest>=7.0",
]

setup(
    name="az-nucleus",
    version=VERSION,
    description="Azure CLI extension for validating, deploying and configuring Bicep/AVM infrastructure projects",
    long_description="Rule-based template validation, Bicep/Terraform deployment, APIM and AKS post-deployment "
    "configuration and security scanning for Nucleus infrastructure repositories.",
    license="MIT",
    author="Nucleus Platform Team",
    author_email="",
    classifiers=CLASSIFIERS,
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=DEPENDENCIES,
    extras_require={"test": TEST_DEPENDENCIES},
    package_data={
        "azext_nucleus": [
            "validation/rules/*.yaml",
        ]
    },
    entry_points={
        "azure.cli.extensions": [
            "nucleus=azext_nucleus",
        ]
    },
)
