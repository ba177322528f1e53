from setuptools import find_packages, setup

setup(
    name="prfocus",
    version="0.1.0",
    description="GitHub webhook event log, diff parsing and LLM-backed pull request analysis",
    packages=find_packages(include=["prfocus", "prfocus.*"]),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2",
        "PyYAML",
        "fastapi",
        "uvicorn",
    ],
    extras_require={"test": ["pytest", "httpx"]},
    entry_points={"console_scripts": ["prfocus=prfocus.cli:main"]},
)
