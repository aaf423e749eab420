from .record_store import RecordStore, StoreError, StaleWriteError, get_store, ENTITY_MODELS

__all__ = ["RecordStore", "StoreError", "StaleWriteError", "get_store", "ENTITY_MODELS"]
