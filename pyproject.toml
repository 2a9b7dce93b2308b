[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tdmanet"
version = "0.1.0"
description = "A small TDMA network simulation: frame protocol, slot scheduler, satellite and ground-station nodes over TCP"
requires-python = ">=3.10"
dependencies = []
keywords = ["tdma", "scheduler", "satellite", "ground station", "framing", "tcp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
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
test = ["pytest"]

[project.scripts]
tdma-satellite = "tdmanet.satellite:main"
tdma-groundstation = "tdmanet.groundstation:main"

[tool.hatch.build.targets.wheel]
packages = ["tdmanet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
