"""Business logic services for browser history ingestion and retrieval"""
