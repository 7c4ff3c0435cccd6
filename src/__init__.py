"""Commentable API: threaded comment views over Cassandra."""
