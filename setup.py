"""Setup configuration for prmetrics"""

from setuptools import setup, find_packages

setup(
    name="pr-merge-metrics",
    version="0.1.0",
    description=(
        "GitHub pull request merge metrics: webhook ingestion, Jira enrichment "
        "and time-to-merge analytics."
    ),
    author="PR Merge Metrics Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "postgres": [
            "psycopg2-binary>=2.9",
        ],
        "dev": [
            "pytest>=7.0",
            "httpx>=0.24",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "pr-merge-metrics=prmetrics.main:main",
        ],
    },
)
