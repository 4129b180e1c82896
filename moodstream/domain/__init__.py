"""Domain services: the content index and streaming delivery."""
