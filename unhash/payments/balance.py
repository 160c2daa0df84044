# unhash/payments/balance.py
"""
Prepaid balances for the payment gate.

When a client pays more than an upload costs, the surplus is credited to the
Pay-Token it presented and later uploads can draw on it without a new
payment. Balances are kept in memory and are lost on restart.
"""
import logging
import threading
from collections import defaultdict
from typing import Dict

logger = logging.getLogger(__name__)


class BalanceLedger:
    """
    In-memory map of Pay-Token to balance in settlement units.

    Thread-safe for concurrent access.
    """

    def __init__(self):
        self._balances: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def balance(self, token: str) -> int:
        with self._lock:
            return self._balances.get(token, 0)

    def credit(self, token: str, amount: int) -> int:
        """
        Add funds to a token.

        Returns:
            The new balance
        """
        if amount < 0:
            raise ValueError(f"Cannot credit a negative amount: {amount}")
        with self._lock:
            self._balances[token] += amount
            new_balance = self._balances[token]
        logger.debug(f"Credited {amount} units to token {token[:8]}..., balance {new_balance}")
        return new_balance

    def debit(self, token: str, amount: int) -> bool:
        """
        Withdraw funds if the full amount is available.

        Returns:
            True if the balance covered the amount and was charged, False otherwise
        """
        if amount < 0:
            raise ValueError(f"Cannot debit a negative amount: {amount}")
        with self._lock:
            current = self._balances.get(token, 0)
            if current < amount:
                return False
            self._balances[token] = current - amount
        logger.debug(f"Debited {amount} units from token {token[:8]}...")
        return True

    def reset_all(self) -> None:
        """Drop all balances."""
        with self._lock:
            self._balances.clear()
        logger.info("Reset all prepaid balances")
