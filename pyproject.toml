[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "plotbatch"
version = "0.6.0"
description = "Batch orchestration for proof-of-space plotting: manifests, device fan-out, VRAM tier selection and a staggered producer/consumer pipeline"
requires-python = ">=3.10"
dependencies = []
keywords = ["plotting", "batch", "proof-of-space", "pipeline", "vram", "scheduling"]
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
    "Topic :: Utilities",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["plotbatch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
