from skimmer.search.base import SearchBackend, SearchHit
from skimmer.search.factory import create_search_backends

__all__ = ["SearchBackend", "SearchHit", "create_search_backends"]
