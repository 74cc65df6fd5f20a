"""
haystack-link: mirrors a Project Haystack server into a tree of
subscribable nodes.
"""

from pyrollup import rollup

from . import core
from .core import *  # noqa

__all__ = rollup(core)

__canonical_children__ = [
    "core",
]
