"""
Paytm Bridge

Payment mediator between merchant storefronts and the Paytm gateway.
"""
__version__ = "1.0.0"
