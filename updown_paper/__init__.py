"""
UpDown Paper Trader
===================

Paper trading simulator for binary up/down BTC markets.
Settles simulated positions against the Kraken reference price and keeps
an audit trail of every closed trade.

Validate a strategy here before committing real funds.
"""

__version__ = "1.0.0"
__author__ = "UpDown Paper Trader"
