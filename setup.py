#!/usr/bin/env python

import io
import re

from setuptools import find_packages, setup


def read_metadata(name):
    """Read a ``__name__ = "value"`` variable from the package."""
    with io.open("upnpcp/__init__.py", encoding="utf-8") as init_file:
        match = re.search(
            r'^__{}__ = "([^"]*)"'.format(name), init_file.read(), re.MULTILINE
        )
    return match.group(1)


with io.open("README.rst", encoding="utf-8") as readme_file:
    LONG_DESCRIPTION = readme_file.read()

setup(
    name="upnpcp",
    version=read_metadata("version"),
    author=read_metadata("author"),
    license=read_metadata("license"),
    description="A UPnP control point: call service actions and receive events",
    long_description=LONG_DESCRIPTION,
    long_description_content_type="text/x-rst",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.7",
    install_requires=["requests", "xmltodict"],
    extras_require={
        "testing": ["pytest"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Home Automation",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
