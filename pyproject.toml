[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ctrld"
version = "0.1.0"
description = "DNS forwarding proxy toolkit: listener selection, control socket, config handling and self checks"
requires-python = ">=3.11"
keywords = ["dns", "proxy", "doh", "forwarder", "resolver"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "semver",
    "tomli-w",
    "tabulate",
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
ctrld = "ctrld.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["ctrld"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
