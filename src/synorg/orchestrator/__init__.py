"""Work-item engine: leasing, execution strategies, runner and queue worker.

The relational store is the only coordination point. Workers claim rows with
``FOR UPDATE SKIP LOCKED`` where the dialect supports it and with a
compare-and-swap update on SQLite, so any number of worker processes can run
against one database without a broker.
"""
