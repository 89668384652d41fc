"""Data models shared by the registry and sync layers."""
