from setuptools import setup, find_packages

setup(
    name="tendergate",
    version="0.1.0",
    packages=find_packages(include=["tendergate", "tendergate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "httpx",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
)
