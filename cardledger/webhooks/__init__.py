"""
Webhook handlers for payment processor callbacks.
"""
