"""
Profit-distribution previews.

A distribution splits an integer pool across members pro rata to their
weighted token balances. The weighting is one of a closed set of named
strategies; shares are rounded with the largest-remainder method so they
always sum to the pool exactly.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional

from config import Config
from db.session_manager import read_scope
from models.member import Member, InvestorTier
from utils.error_handling import ValidationError

logger = logging.getLogger(__name__)


class DistributionStrategy:
    """Base class for balance weighting strategies."""
    name = None

    def weight(self, member: Member) -> Decimal:
        return Decimal(int(member.token_balance or 0))


class StandardBalance(DistributionStrategy):
    name = 'standard'


class InstitutionalBonus(DistributionStrategy):
    name = 'institutional_bonus'

    def __init__(self, bonus: Optional[float] = None):
        self.bonus = Decimal(str(Config.DISTRIBUTION_INSTITUTIONAL_BONUS if bonus is None else bonus))

    def weight(self, member: Member) -> Decimal:
        base = super().weight(member)
        return base * self.bonus if member.tier == InvestorTier.INSTITUTIONAL else base


class EarlyInvestorBonus(DistributionStrategy):
    name = 'early_investor_bonus'

    def __init__(self, bonus: Optional[float] = None):
        self.bonus = Decimal(str(Config.DISTRIBUTION_EARLY_INVESTOR_BONUS if bonus is None else bonus))

    def weight(self, member: Member) -> Decimal:
        base = super().weight(member)
        return base * self.bonus if member.early_investor else base


STRATEGIES = {cls.name: cls for cls in (StandardBalance, InstitutionalBonus, EarlyInvestorBonus)}


def get_strategy(name: str) -> DistributionStrategy:
    """Instantiate a strategy by name; unknown names are a ValidationError."""
    strategy_cls = STRATEGIES.get(name)
    if strategy_cls is None:
        raise ValidationError('Unknown distribution strategy',
                              field_errors={'strategy': f"Strategy must be one of: {', '.join(sorted(STRATEGIES))}"})
    return strategy_cls()


class Share(NamedTuple):
    username: str
    balance: int
    weight: Decimal
    amount: int

    def to_dict(self) -> dict:
        return {
            'username': self.username,
            'tokenBalance': self.balance,
            'weight': str(self.weight),
            'amount': self.amount,
        }


def allocate(pool: int, weights: Dict[str, Decimal]) -> Dict[str, int]:
    """
    Split ``pool`` pro rata to ``weights`` using largest remainders.

    Ties on the remainder are broken by key so the result is deterministic.
    """
    total = sum(weights.values())
    if pool <= 0 or total <= 0:
        return {key: 0 for key in weights}

    amounts = {}
    remainders = []
    for key, weight in weights.items():
        exact = Decimal(pool) * weight / total
        floor = int(exact)
        amounts[key] = floor
        remainders.append((exact - floor, key))

    leftover = pool - sum(amounts.values())
    remainders.sort(key=lambda item: (-item[0], item[1]))
    for _, key in remainders[:leftover]:
        amounts[key] += 1
    return amounts


def preview_distribution(pool, strategy_name: str, members: Optional[Iterable[Member]] = None) -> List[Share]:
    """
    Preview how ``pool`` would be split across members under a strategy.

    Members with no tokens are left out. Nothing is persisted.
    """
    if isinstance(pool, bool) or not isinstance(pool, int) or pool <= 0:
        raise ValidationError('Invalid distribution pool', field_errors={'pool': 'Pool must be a positive integer'})
    strategy = get_strategy(strategy_name)

    if members is None:
        with read_scope():
            members = Member.query.filter(Member.token_balance > 0).order_by(Member.username).all()

    holders = [m for m in members if (m.token_balance or 0) > 0]
    weights = {m.username: strategy.weight(m) for m in holders}
    amounts = allocate(pool, weights)

    logger.info("Previewed %s distribution of %d across %d member(s)", strategy.name, pool, len(holders))
    return [Share(m.username, int(m.token_balance), weights[m.username], amounts[m.username]) for m in holders]
