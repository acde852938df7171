from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="learnflow",
    version="0.1.0",
    description="Learning paths, YouTube video search and knowledge checks behind one API",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "requests>=2.31.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=4.9.0",
        "playwright>=1.39.0",
        "types-requests>=2.31.0",
        "types-beautifulsoup4>=4.12.0",
        "openai>=1.40.0",
        "httpx>=0.27.0",
        "rich>=14.2.0",
        "pyyaml>=6.0.3",
        "python-dotenv>=1.0.0",
        "fastapi>=0.110.0",
        "pydantic>=2.0.0",
        "uvicorn>=0.29.0",
        "youtube-transcript-api>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "learnflow=learnflow.learnflow:main",
        ],
    },
)
