[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "goim"
version = "2.0.0"
description = "Building blocks for a push-based instant messaging service: wire protocol, comet connection state, Redis data access, node balancing and a push job."
requires-python = ">=3.11"
dependencies = [
    "redis",
]
keywords = ["im", "chat", "push", "comet", "websocket", "messaging"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["goim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
