"""
vtrace.cache — Persistent, differentially updated commit → tags cache.

    result = await load_or_build_tag_cache(repo_path)
    result.cache          # {commit_hash: [TagInfo, ...]}
    result.stats          # added / deleted / modified / unchanged / full_rebuild
"""

__all__ = ["load_or_build_tag_cache", "TagCacheStore"]

from vtrace.cache.manager import load_or_build_tag_cache
from vtrace.cache.store import TagCacheStore
