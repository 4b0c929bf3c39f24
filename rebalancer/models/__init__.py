from rebalancer.models.ledger import TransactionRecord, init_db, close_db, default_db_url

__all__ = ["TransactionRecord", "init_db", "close_db", "default_db_url"]
