"""
Setup script for the telehealth payments service
"""
from setuptools import setup, find_packages

setup(
    name="telehealth_payments",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "starlette>=0.36",
        "pydantic>=2.5",
        "SQLAlchemy>=2.0",
        "alembic>=1.13",
        "psycopg2-binary>=2.9",
        "httpx>=0.27",
        "python-dotenv>=1.0",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
