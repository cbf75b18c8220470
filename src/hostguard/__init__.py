"""
hostguard - personal host security and health dashboard.

Runs a fixed set of read-only probes against the local machine, scores
the results, and offers scripted remediations over HTTP and the CLI.
"""

__version__ = "1.0.0"
__author__ = "hostguard maintainers"
