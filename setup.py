from setuptools import setup, find_packages

setup(
    name="scenarioforge",
    version="0.1.0",
    author="Scenario Forge",
    description="Scenario graph engine: expressions, Monte Carlo risk and sensitivity analysis",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.4",
        "pydantic-settings>=2.0",
        "networkx>=3.0",
        "numpy>=1.22",
        "pandas>=1.5",
        "matplotlib>=3.5",
        "fastapi>=0.100",
        "uvicorn>=0.20",
    ],
    extras_require={
        "test": ["pytest>=7.0", "httpx>=0.24"],
    },
    zip_safe=False,
    python_requires=">=3.9",
)
