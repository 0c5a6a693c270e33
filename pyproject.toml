[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtpintercept"
version = "0.1.0"
description = "Pluggable RTP/RTCP interceptors: NACK generation, sender and receiver reports, transport-wide congestion control feedback and packet dumping."
requires-python = ">=3.10"
dependencies = []
keywords = ["rtp", "rtcp", "nack", "twcc", "webrtc", "interceptor", "congestion-control"]
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
    "Topic :: Multimedia :: Video",
    "Topic :: Communications :: Conferencing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rtpintercept"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
