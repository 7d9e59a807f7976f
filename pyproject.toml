[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wsgikit"
version = "0.1.0"
description = "Composable HTTP middleware: exception recovery, request ids, real client IP, access guard, body limits and CORS."
requires-python = ">=3.10"
dependencies = [
    "multidict",
]
keywords = [
    "http",
    "middleware",
    "cors",
    "request-id",
    "real-ip",
    "x-forwarded-for",
    "access-control",
    "body-limit",
]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["wsgikit"]

[tool.pytest.ini_options]
addopts = "-ra"
