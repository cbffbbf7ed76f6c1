"""
Spider: frontier, fetcher, parser/classifier and the worker pool.
"""
