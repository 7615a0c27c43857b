[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blockrange"
version = "0.8.0a0"
description = "Stream block number ranges from an EVM-style chain with reorg detection, confirmations and live, historical, sync and rewind modes."
requires-python = ">=3.10"
dependencies = []
keywords = ["blockchain", "evm", "ethereum", "blocks", "reorg", "asyncio", "streaming"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["blockrange"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
