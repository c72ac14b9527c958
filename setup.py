"""Setup configuration for rag-pipeline-server."""
from setuptools import setup, find_packages

setup(
    name="rag-pipeline-server",
    version="1.0.0",
    description="URL-routed RAG ingestion pipelines with Qdrant vector search",
    author="artqcid",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"rag_pipeline": ["data/*.json"]},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "httpx>=0.27.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "qdrant-client>=1.10.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=4.9.0",
    ],
    extras_require={
        "dev": ["pytest", "pytest-asyncio", "httpx"],
    },
    entry_points={
        "console_scripts": [
            "rag-pipeline-server=rag_pipeline.__main__:main",
            "rag-pipeline=rag_pipeline.cli:main",
        ],
    },
)
