"""
Scoopify Backend Application

Backend of a recurring-service marketplace that provides:
- Weekly generation of service visits from customer subscriptions
- Claim and completion workflow for field employees
- Retries of failed subscription charges
- Employee payouts and referral commissions
"""

__version__ = "0.1.0"
