# setup.py
from setuptools import setup, find_packages

setup(
    name="dbapi",
    version="0.1.0",
    description="Uniform asynchronous query and transaction API over SQLite and MySQL/MariaDB",
    packages=find_packages(
        exclude=(
            "tests",
            "tests.*",
            "docs",
            "build",
            "dist",
        )
    ),
    python_requires=">=3.10",
    install_requires=[
        "PyMySQL>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
)
