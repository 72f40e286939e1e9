[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ristretto"
version = "0.1.0"
description = "A fixed-size in-memory cache with TinyLFU admission and sampled LFU eviction"
requires-python = ">=3.10"
keywords = ["cache", "lfu", "tinylfu", "bloom-filter", "count-min-sketch"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ristretto"]

[tool.pytest.ini_options]
addopts = "-ra"
