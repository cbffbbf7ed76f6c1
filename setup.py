from setuptools import setup, find_packages

setup(
    name="whynot",
    version="0.1.0",
    description="Incremental website archiver and archive mirror server",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"whynot.web": ["templates/*.html"]},
    python_requires=">=3.11",
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "cachetools>=5.3",
        "fastapi>=0.110",
        "jinja2>=3.1",
        "prometheus-client>=0.19",
        "pydantic>=2.0.0",
        "tenacity",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    entry_points={
        "console_scripts": [
            "spider=whynot.cli.spider:main",
            "web=whynot.cli.web:main",
        ],
    },
)
