from setuptools import setup, find_packages

setup(
    name="askai",
    version="0.1.0",
    description="RAG-based natural language to SQL for event participant data",
    author="AskAI Team",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    install_requires=[
        "chromadb>=0.4.0",
        "langchain-community>=0.0.20,<0.4",
        "langchain-core>=0.1.0",
        "sqlglot>=18.0.0",
        "sentence-transformers>=2.2.0",
        "numpy>=1.24.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.20.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "python-dotenv>=1.0.0",
        "click>=8.0.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
        ],
        "mssql": [
            "aioodbc>=0.5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "askai=askai.cli:main",
        ],
    },
)
