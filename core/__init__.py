"""
core/__init__.py

Core routing and thread management modules.

This package contains the central coordination logic of the thread router:
- thread_store: In-memory owner of every thread, keyed by session
- keywords: Keyword extraction used for matching
- matcher: Scoring of in-flight threads against a message
- lifecycle: Thread state machine and handling-path routing
- classifier: Boundary to the external intent classifier
- dispatcher: End-to-end handling of a guest turn
"""
