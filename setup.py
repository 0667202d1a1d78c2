# otphaven: Project Setup Configuration

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="otphaven",
    version="0.1.0",
    author="otphaven contributors",
    description="Local-first TOTP vault with encrypted storage and device-to-device sync",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Security :: Cryptography",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.109.0",
        "uvicorn[standard]>=0.27.0",
        "pydantic>=2.0",
        "websockets>=12.0",
        "cryptography>=42.0.0",
        "structlog>=24.1.0",
        "python-dotenv>=1.0.0",
        "pyotp>=2.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.26.0",  # fastapi.testclient
        ],
    },
    entry_points={
        "console_scripts": [
            "otphaven=otphaven.__main__:main",
        ],
    },
)
