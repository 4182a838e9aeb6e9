[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "anubis"
version = "0.1.0"
description = "Building blocks for a bot-filtering web proxy: WSGI middleware for forwarded-for headers, an expiring map, DNS blocklist lookups and robots.txt policy conversion."
requires-python = ">=3.10"
keywords = [
    "wsgi",
    "middleware",
    "bot-protection",
    "robots.txt",
    "x-forwarded-for",
    "dnsbl",
    "gzip",
]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Security",
]
dependencies = [
    "httpx",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[project.scripts]
robots2policy = "anubis.robots2policy:main"
robots2policy-batch = "anubis.robots_batch:main"
anubis-containerbuild = "anubis.containerbuild:main"

[tool.hatch.build.targets.wheel]
packages = ["anubis"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 120
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
