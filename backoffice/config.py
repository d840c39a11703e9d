#!/usr/bin/env python3
"""
Reconciliation Configuration
Matching windows, tolerances and thresholds, overridable through the environment
"""

import os
from dataclasses import dataclass


# Matches created by a human are filed under these synthetic categories,
# alongside the per-payment-type categories produced by automatic runs
RESOLVED_EXCEL_CATEGORY = "Resolved and Matched"
RESOLVED_SAP_CATEGORY = "SAP Resolved Matches"

# Resolution recorded on sales lines already verified by an earlier SAP resolution
VERIFIED_RESOLUTION = "Verified in an earlier reconciliation"

STRATEGY_GREEDY = "greedy"
STRATEGY_ONE_TO_ONE = "one_to_one"


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, '') else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, '') else default


@dataclass
class MatchingConfig:
    """Tunables for the matching engine, bank pass and suggestion search"""
    date_window_days: int = 50
    amount_tolerance: float = 0.01
    acceptance_threshold: float = 0.6
    strategy: str = STRATEGY_GREEDY

    bank_date_window_days: int = 50
    bank_amount_tolerance: float = 0.01

    suggest_date_window_days: int = 20
    suggest_amount_tolerance: float = 0.30
    suggest_limit: int = 5
    # Suggestions whose scores differ by less than this are ordered by amount closeness
    suggest_tie_band: float = 0.6

    @classmethod
    def from_env(cls) -> 'MatchingConfig':
        """Build a config from RECON_* environment variables"""
        return cls(
            date_window_days=_env_int('RECON_DATE_WINDOW_DAYS', cls.date_window_days),
            amount_tolerance=_env_float('RECON_AMOUNT_TOLERANCE', cls.amount_tolerance),
            acceptance_threshold=_env_float('RECON_ACCEPTANCE_THRESHOLD', cls.acceptance_threshold),
            strategy=os.getenv('RECON_MATCH_STRATEGY', cls.strategy),
            bank_date_window_days=_env_int('RECON_BANK_DATE_WINDOW_DAYS', cls.bank_date_window_days),
            bank_amount_tolerance=_env_float('RECON_BANK_AMOUNT_TOLERANCE', cls.bank_amount_tolerance),
            suggest_date_window_days=_env_int('RECON_SUGGEST_DATE_WINDOW_DAYS', cls.suggest_date_window_days),
            suggest_amount_tolerance=_env_float('RECON_SUGGEST_AMOUNT_TOLERANCE', cls.suggest_amount_tolerance),
            suggest_limit=_env_int('RECON_SUGGEST_LIMIT', cls.suggest_limit),
        )
