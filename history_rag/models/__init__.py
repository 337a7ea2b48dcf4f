"""Pydantic models for browser history entries, queries and statistics"""
