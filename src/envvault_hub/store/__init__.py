from envvault_hub.store.env_store import MAX_IN_CLAUSE, EnvRecordStore

__all__ = ["EnvRecordStore", "MAX_IN_CLAUSE"]
