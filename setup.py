from setuptools import setup, find_packages
from pathlib import Path
import sys

# Check Python version requirement
if sys.version_info < (3, 9):
    raise RuntimeError("FtpPool requires Python 3.9 or newer")

setup(
    name="FtpPool",
    version="1.0.0",
    author="Andrew Hernandez",
    author_email="andromedeyz@hotmail.com",
    description="An async FTP client library for Python with a bounded connection pool, MLST/LIST parsing, and SSL support.",
    long_description=(
        open("README.md", "r", encoding="utf-8").read()
        if Path("README.md").exists()
        else "FtpPool gives you a filesystem-style async API over FTP. Operations share a bounded pool of logged in connections, dead sessions get replaced behind your back, and MLSD or plain LIST output comes back as the same tidy records."
    ),
    long_description_content_type="text/markdown",
    url="http://github.com/ApaxPhoenix/FtpPool",
    project_urls={
        "Bug Tracker": "http://github.com/ApaxPhoenix/FtpPool/issues",
        "Source Code": "http://github.com/ApaxPhoenix/FtpPool",
    },
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: AsyncIO",
        "Topic :: Internet :: File Transfer Protocol (FTP)",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Networking",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aioftp>=0.22.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    keywords="ftp, ftps, async, connection pool, mlst, file transfer, client",
    license="MIT",
    zip_safe=False,
)
