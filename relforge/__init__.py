"""relforge - declarative release management.

Describe a multi-component application once, then install, upgrade,
roll back and scale it by reconciling the cluster against that description.
"""

__version__ = "0.1.0"
