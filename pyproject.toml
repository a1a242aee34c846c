[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ficosim"
version = "0.1.0"
description = "Discrete-event simulation of CAN and FlexRay fieldbus node models"
requires-python = ">=3.10"
dependencies = []
keywords = ["can", "flexray", "fieldbus", "simulation", "discrete-event", "automotive"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Electronic Design Automation (EDA)",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ficosim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
