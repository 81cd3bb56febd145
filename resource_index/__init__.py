"""Resource index: chunking, remote index protocol, snapshot cache, ranking.

Provides:
- Slug normalisation shared by index push and fetch (slugs.py)
- Word-grouped text chunking with per-chunk embeddings (chunker.py)
- Collection-wide reindex and index fetch against the remote service (index_client.py)
- Fingerprinted per-topic snapshot cache with single-flight rebuilds (index_cache.py)
- Cosine-similarity top-K ranking (retriever.py)

Consistency rule: the local ``indexed`` flag always wins.  The remote index
may lag behind a toggle, but a chunk whose resource is excluded locally is
never returned to a query.
"""
