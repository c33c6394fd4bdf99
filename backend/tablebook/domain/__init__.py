"""
Pure booking, payment and offer rules. No I/O lives in this package.
"""
