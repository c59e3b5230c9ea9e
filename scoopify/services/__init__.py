"""
Business logic: service generation, the service lifecycle, payment retries,
earnings and settlement.
"""
