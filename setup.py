#!/usr/bin/python3
# Setup file for gctm
# Copyright (C) 2025 The gctm authors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require = ["pytest"]


setup(
    name="gctm",
    version="0.1.0",
    description="Git Commit Time Machine: rewrite dates, messages and content of git history",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.10",
    packages=["gctm"],
    package_data={"": ["py.typed"]},
    install_requires=["urllib3>=2.2.2"],
    extras_require={"test": tests_require},
    entry_points={"console_scripts": ["gctm=gctm.cli:_main"]},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)
