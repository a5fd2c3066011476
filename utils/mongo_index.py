# utils/mongo_index.py
import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)

TRANSACTION_LOG_COLLECTION = "Transaction_History"

# name -> (keys, unique)
TRANSACTION_LOG_INDEXES = {
    "ts": ([("timestamp", DESCENDING)], False),
    "endpoint_ts": ([("endpoint", ASCENDING), ("timestamp", DESCENDING)], False),
    "author_ts": ([("author", ASCENDING), ("timestamp", DESCENDING)], False),
}


def ensure_index(coll, keys, name: str, *, unique: bool = False, drop_if_mismatch: bool = False) -> bool:
    """
    Create the named index unless an identical one is already there.
    A same-named index with other keys/uniqueness is left alone unless
    drop_if_mismatch is set, so a stale index never blocks startup.
    Returns True when an index was (re)created.
    """
    existing = coll.index_information().get(name)
    if existing is not None:
        if list(existing["key"]) == list(keys) and bool(existing.get("unique", False)) == unique:
            return False
        if not drop_if_mismatch:
            logger.warning("index %s on %s differs from the expected definition; keeping it", name, coll.name)
            return False
        try:
            coll.drop_index(name)
        except OperationFailure as e:
            logger.warning("could not drop index %s on %s: %s", name, coll.name, e)

    coll.create_index(keys, name=name, unique=unique)
    logger.info("created index %s on %s", name, coll.name)
    return True


def ensure_transaction_log_indexes(mdb, drop_if_mismatch: bool = False):
    coll = mdb[TRANSACTION_LOG_COLLECTION]
    for name, (keys, unique) in TRANSACTION_LOG_INDEXES.items():
        ensure_index(coll, keys, name, unique=unique, drop_if_mismatch=drop_if_mismatch)
    return coll
