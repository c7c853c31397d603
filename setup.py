from setuptools import setup, find_packages

setup(
    name="ore-martingale",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "solana>=0.34.0",
        "solders>=0.21.0",
        "base58>=2.1.0",
        "python-dotenv>=1.0.0",
        "aiohttp>=3.9.0",
        "click>=8.1.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "ore-martingale=ore_martingale.cli:main",
        ],
    },
    python_requires=">=3.10",
)
