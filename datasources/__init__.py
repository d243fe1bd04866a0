"""Data source clients for the message header cache."""

# Delay heavy imports to avoid circular dependencies
__all__ = ["MessageStoreClient", "MessageStoreAPIError"]

def __getattr__(name):  # pragma: no cover - simple lazy loader
    if name in __all__:
        from .msgstore import MessageStoreClient, MessageStoreAPIError
        globals().update({"MessageStoreClient": MessageStoreClient, "MessageStoreAPIError": MessageStoreAPIError})
        return globals()[name]
    raise AttributeError(name)
