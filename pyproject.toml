[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tapstack"
version = "0.1.0"
description = "A small user-space network stack with Ethernet, ARP, IPv4, ICMP and a debug shell"
requires-python = ">=3.10"
dependencies = []
keywords = ["networking", "arp", "ipv4", "icmp", "protocol stack", "ethernet"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
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
tapstack = "tapstack.shell:main"

[tool.hatch.build.targets.wheel]
packages = ["tapstack"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
