#!/usr/bin/env python
"""lqrtrees setup."""

import os
from setuptools import setup, find_packages


def read(fname):
    """Reads a file's contents as a string.

    Args:
        fname: Filename.

    Returns:
        File's contents.
    """
    with open(os.path.join(os.path.dirname(__file__), fname)) as f:
        return f.read()


BASE_URL = "https://github.com/anassinator/lqrtrees"
INSTALL_REQUIRES = [
    "numpy>=1.22",
    "scipy>=1.8",
    "jax>=0.4.1",
]
TESTS_REQUIRE = [
    "pytest>=7.0",
]

# Parse version information.
# yapf: disable
version_info = {}
exec(read("lqrtrees/__version__.py"), version_info)
version = version_info["__version__"]
# yapf: enable

setup(name="lqrtrees",
      version=version,
      description="LQR over scenario trees and hindsight iLQR",
      long_description=read("README.rst"),
      author="Anass Al",
      author_email="dev@anassinator.com",
      license="GPLv3",
      url=BASE_URL,
      download_url="{}/tarball/{}".format(BASE_URL, version),
      packages=find_packages(exclude=["tests"]),
      zip_safe=True,
      python_requires=">=3.8",
      install_requires=INSTALL_REQUIRES,
      extras_require={"test": TESTS_REQUIRE},
      classifiers=[
          "Development Status :: 4 - Beta",
          "Intended Audience :: Developers",
          "Intended Audience :: Science/Research",
          "License :: OSI Approved :: GNU General Public License v3 (GPLv3)",
          "Operating System :: OS Independent",
          "Programming Language :: Python :: 3",
          "Topic :: Scientific/Engineering :: Mathematics",
      ])
