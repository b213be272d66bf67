"""Setup for ActionGate Python SDK."""

from setuptools import find_packages, setup

setup(
    name="actiongate-sdk",
    version="0.1.0",
    description="ActionGate API Python SDK",
    packages=find_packages(include=["actiongate_sdk", "actiongate_sdk.*"]),
    install_requires=[
        "requests>=2.31.0",
    ],
    python_requires=">=3.11",
)
