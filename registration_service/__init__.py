"""
Registration Service
Event registration, payment gating and QR check-in.
"""
