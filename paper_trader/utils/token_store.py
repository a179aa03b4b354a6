"""
Bounded store of the tokens a strategy is monitoring.
"""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Container, Iterator, List, Optional, Tuple

from paper_trader.config import logger, MAX_MONITORED_TOKENS
from paper_trader.models import MonitoredToken


class TokenStore:
    """
    Monitored tokens keyed by address, in insertion order.

    The store never grows beyond `max_size`; when full, the least recently
    updated token that is not protected is evicted to make room.
    """

    def __init__(self, max_size: int = MAX_MONITORED_TOKENS):
        self.max_size = max_size
        self._tokens: 'OrderedDict[str, MonitoredToken]' = OrderedDict()

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, address: object) -> bool:
        return address in self._tokens

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tokens))

    def get(self, address: str) -> Optional[MonitoredToken]:
        return self._tokens.get(address)

    def values(self) -> List[MonitoredToken]:
        return list(self._tokens.values())

    def items(self) -> List[Tuple[str, MonitoredToken]]:
        return list(self._tokens.items())

    def add(self, token: MonitoredToken, protected: Container[str] = ()) -> bool:
        """Add a token. Returns False when the store is full of protected tokens."""
        if token.address not in self._tokens and len(self._tokens) >= self.max_size:
            candidates = [t for t in self._tokens.values() if t.address not in protected]
            if not candidates:
                logger.debug(f"Token store full, not monitoring {token.symbol}")
                return False
            oldest = min(candidates, key=lambda t: t.last_updated)
            self.remove(oldest.address)
            logger.debug(f"Evicted {oldest.symbol} to make room for {token.symbol}")
        self._tokens[token.address] = token
        return True

    def remove(self, address: str) -> Optional[MonitoredToken]:
        return self._tokens.pop(address, None)

    def sweep(self, now: datetime, stale_after: timedelta, keep: Container[str] = (),
              still_eligible: Optional[Callable[[MonitoredToken], bool]] = None) -> List[MonitoredToken]:
        """
        Drop tokens that are stale or no longer eligible.

        Tokens whose address is in `keep` are never dropped. Returns the
        removed tokens.
        """
        removed = []
        for address, token in self.items():
            if address in keep:
                continue
            if now - token.last_updated > stale_after:
                reason = "stale"
            elif still_eligible is not None and not still_eligible(token):
                reason = "no longer meets criteria"
            else:
                continue
            self.remove(address)
            removed.append(token)
            logger.info(f"Removed {token.symbol} from monitoring ({reason})")
        return removed
