[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sharedboard"
version = "0.1.0"
description = "A shared whiteboard: a TCP/UDP server that relays strokes and a Tk desktop client for drawing together"
requires-python = ">=3.10"
dependencies = []
keywords = ["whiteboard", "drawing", "collaboration", "tcp", "udp", "asyncio", "tkinter"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: X11 Applications",
    "Framework :: AsyncIO",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Editors :: Raster-Based",
    "Topic :: Communications :: Conferencing",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
sharedboard-server = "sharedboard.server:main"
sharedboard = "sharedboard.gui:main"

[tool.hatch.build.targets.wheel]
packages = ["sharedboard"]

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
