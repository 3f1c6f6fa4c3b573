"""
Integration tests for reply-by-email note ingestion.

These tests use mocked AWS services to run complete reply emails through
the pipeline (parsing, routing, commands, attachments and note storage).
"""
