"""
HTTP surface for the repository chat assistant.
"""
