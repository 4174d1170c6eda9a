from setuptools import setup, find_namespace_packages

with open("requirements.txt", "r") as f:
    requirements = f.read().splitlines()

setup(
    name="chatgate",
    version="1.0",
    packages=find_namespace_packages(include=["chatgate", "chatgate.*"]),
    install_requires=requirements,
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
    },
)
