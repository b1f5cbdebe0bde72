DEFAULT_LIST_PAGE_SIZE = 1000
DEFAULT_MAX_CLEANUP_PAGES = 100


def build_object_store(*args: object, **kwargs: object):
    from app.lib.storage.factory import build_object_store as _build_object_store

    return _build_object_store(*args, **kwargs)


__all__ = ["DEFAULT_LIST_PAGE_SIZE", "DEFAULT_MAX_CLEANUP_PAGES", "build_object_store"]
