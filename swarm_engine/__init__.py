"""
Swarm Engine: coordination core for groups of autonomous agents.

Forms swarms, arranges members into formations, runs collective
movement algorithms over a shared stigmergic medium, and resolves
actions that need every participant to report back.
"""

__version__ = "0.1.0"
