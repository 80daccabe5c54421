"""
Backend package for the WeddingPix gallery API.

One FastAPI service over an injected gallery store (in-memory, SQL or
user-isolated Firestore documents), plus the tooling that migrates legacy
global Firestore collections into per-user collections.
"""
