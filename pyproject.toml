[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "xorcast"
version = "0.1.0"
description = "Broadcast a file character by character through a shared-memory ring buffer with XOR encryption"
requires-python = ">=3.10"
dependencies = []
keywords = ["shared-memory", "ipc", "producer-consumer", "semaphore", "ring-buffer", "xor"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xorcast-init = "xorcast.initializer:main"
xorcast-emit = "xorcast.emitter:main"
xorcast-receive = "xorcast.receiver:main"
xorcast-finalize = "xorcast.finalizer:main"

[tool.setuptools]
packages = ["xorcast"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
