from setuptools import setup, find_packages

setup(
    name="armory-gateway",
    version="0.1.0",
    packages=find_packages(include=["armory", "armory.*"]),
    install_requires=[
        "fastapi",
        "httpx",
        "pydantic>=2",
        "pydantic-settings",
        "redis>=5",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
    python_requires=">=3.11",
)
