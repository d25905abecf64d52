[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wimdisk"
version = "0.1.0"
description = "Synthesise a read-only FAT32 virtual disk holding files and WIM image contents, with on-the-fly WIM patching"
requires-python = ">=3.10"
dependencies = []
keywords = ["wim", "fat32", "virtual disk", "boot", "windows imaging", "mbr"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wimdisk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"
