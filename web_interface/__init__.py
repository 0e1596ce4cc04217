"""
HTTP interface for the multisig coordinator
"""
