"""Storage - in-process caches"""
