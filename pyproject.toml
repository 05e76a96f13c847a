[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "seedingbot"
version = "0.1.0"
description = "Building blocks for a football chat-room seeding bot: match feed mapping, LLM replies, SQL storage and MQTT delivery"
requires-python = ">=3.10"
keywords = ["chat", "football", "seeding", "bot", "mqtt", "llm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Typing :: Typed",
]
dependencies = [
    "pyyaml>=6.0",
    "paho-mqtt>=1.6",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["seedingbot"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
