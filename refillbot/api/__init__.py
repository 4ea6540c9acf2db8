"""
HTTP clients for the Jupiter aggregator and token list services.
"""
