#!/usr/bin/python
# -*- encoding: utf-8 -*-
import ast
import re

from setuptools import find_packages
from setuptools import setup

## The version number is kept in one place only, as
## carddav.__version__.  It's parsed out of the source rather than
## imported, since the dependencies may not be installed yet.
_version_re = re.compile(r"__version__\s+=\s+(.*)")
with open("carddav/__init__.py", "rb") as f:
    version = str(
        ast.literal_eval(_version_re.search(f.read().decode("utf-8")).group(1))
    )

if __name__ == "__main__":
    test_packages = [
        "pytest",
        "pytest-coverage",
        "coverage",
    ]

    setup(
        name="carddav",
        version=version,
        description="CardDAV (RFC6352) client library",
        long_description=open("README.md").read(),
        long_description_content_type="text/markdown",
        classifiers=[
            "Development Status :: 4 - Beta",
            "Intended Audience :: Developers",
            "License :: OSI Approved :: Apache Software License",
            "Operating System :: OS Independent",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Topic :: Communications :: Email :: Address Book",
            "Topic :: Software Development :: Libraries " ":: Python Modules",
        ],
        keywords="carddav webdav vcard contacts",
        license="Apache-2.0",
        packages=find_packages(exclude=["tests", "tests.*"]),
        include_package_data=True,
        zip_safe=False,
        python_requires=">=3.8",
        install_requires=[
            "vobject",
            "lxml",
            "requests",
            "dnspython",
            "PyYAML",
            "typing_extensions",
        ],
        extras_require={
            "test": test_packages,
        },
    )
