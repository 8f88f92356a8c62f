from setuptools import find_packages, setup

setup(
    name="buildcheck",
    version="0.1",
    packages=find_packages(include=["buildcheck", "buildcheck.*"]),
    license="Apache 2.0",
    description="Build verification for Go projects: checks, unit tests with coverage, CI reports",
    python_requires=">=3.9",
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "buildcheck=buildcheck.__main__:cli",
        ]
    },
)
