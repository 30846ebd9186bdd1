from setuptools import setup, find_packages

setup(
    name="studywell-reminders",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "pydantic>=2",
        "pydantic-settings",
        "python-dotenv",
        "firebase-admin>=6.0",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
        "apscheduler>=3.10,<4",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
)
