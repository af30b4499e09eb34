[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "extkit"
version = "0.1.0"
description = "Framed TCP and TLS networking helpers with a threaded client/server layer"
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "tls", "ssl", "sockets", "networking", "framing"]
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
    "Topic :: Software Development :: Libraries",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["extkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
