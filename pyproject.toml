[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nlkbalancer"
version = "0.1.0"
description = "Keeps NGINX Plus upstream servers in step with Kubernetes services, endpoint slices and nodes."
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "nginx",
    "nginx-plus",
    "kubernetes",
    "load-balancer",
    "upstream",
    "synchronization",
    "health-probes",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["nlkbalancer"]

[tool.hatch.build.targets.sdist]
include = [
    "nlkbalancer",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
