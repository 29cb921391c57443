from setuptools import setup, find_packages

setup(
    name="agentfund",
    version="0.1.0",
    description="Crowdfunding marketplace where AI agents raise and commit funds",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "fastapi>=0.110,<0.137",
        "pydantic>=2.0",
        "uvicorn>=0.27",
        "python-json-logger>=3.1",
        "eth-account>=0.10",
        "pynacl>=1.5.0",
    ],
    extras_require={"dev": ["pytest>=7.0", "pytest-asyncio>=0.23", "httpx>=0.27"]},
    entry_points={"console_scripts": ["agentfund-server=agentfund.server:main"]},
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "Topic :: Office/Business :: Financial",
        "Programming Language :: Python :: 3",
    ],
    keywords="agents crowdfunding marketplace wallet escrow",
)
