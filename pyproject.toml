[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "payrouter"
version = "0.1.0"
description = "Payment intake service that routes payments between a default and a fallback processor and keeps per-processor totals in Redis."
requires-python = ">=3.11"
keywords = ["payments", "circuit-breaker", "aiohttp", "redis", "routing"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "aiohttp>=3.9",
    "redis>=5.0.1",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
payrouter = "payrouter.app:main"

[tool.hatch.build.targets.wheel]
packages = ["payrouter"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
