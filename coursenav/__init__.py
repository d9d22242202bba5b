"""
coursenav - course progression client.

Loads a course's curriculum from the remote curriculum service, keeps the
assembled tree in a stale-while-revalidate cache, tracks completion and moves
the learner linearly through the content.
"""

__version__ = "1.0.0"
