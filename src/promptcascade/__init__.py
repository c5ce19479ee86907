"""
promptcascade: cascading execution of prompt trees against a generative backend.

Walks a tree of prompt nodes level by level, threading accumulated results
into each generation call, with bounded retries, human-mediated recovery and
recursive execution of action-created subtrees.
"""

__version__ = "0.1.0"
