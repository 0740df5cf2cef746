"""
Command line interface for FunnelCMS (``fcms``).
"""
