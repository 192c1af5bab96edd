"""
KDAO Constants

This module consolidates all global constants and environment configuration
used throughout the codebase. Constants are organized by category for easy
reference and maintenance.
"""
import ast

from dotenv import dotenv_values

# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================
# Load environment variables once at module import
_config = dotenv_values(".env")

LOGGER_DEFAULTS = {
    'LOG_LEVEL':                       'INFO',
    'LOG_FORMAT':                      '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    'LOG_DATE_FORMAT':                 '%Y-%m-%dT%H:%M:%S',
    'LOG_CONSOLE_HIGHLIGHTING':        'True',
    'LOG_FILE_OUTPUT':                 'False',
}

LOG_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5


# ==================================================================================
# TOKEN UNITS
# ==================================================================================
TOKEN_DECIMALS = 18
UNIT = 10 ** TOKEN_DECIMALS  # 1 KDAO in base units
BPS_DENOMINATOR = 10_000
PERCENT_DENOMINATOR = 100
DAY = 86400

# Initial supply used by the reference deployment (150M KDAO)
INITIAL_SUPPLY = 150_000_000 * UNIT


# ==================================================================================
# ROLES
# ==================================================================================
DEFAULT_ADMIN_ROLE = "DEFAULT_ADMIN_ROLE"
GOVERNANCE_ROLE = "GOVERNANCE_ROLE"
GUARDIAN_ROLE = "GUARDIAN_ROLE"
EXECUTOR_ROLE = "EXECUTOR_ROLE"
REWARDS_MANAGER_ROLE = "REWARDS_MANAGER_ROLE"
AUDITOR_ROLE = "AUDITOR_ROLE"

ALL_ROLES = (
    DEFAULT_ADMIN_ROLE,
    GOVERNANCE_ROLE,
    GUARDIAN_ROLE,
    EXECUTOR_ROLE,
    REWARDS_MANAGER_ROLE,
    AUDITOR_ROLE,
)


# ==================================================================================
# STAKING PARAMETERS
# ==================================================================================
STAKING_MIN_STAKE = 100 * UNIT
STAKING_POOL_CAPACITY = 50_000_000 * UNIT
STAKING_MIN_AUXILIARY_STAKE = 100 * UNIT
STAKING_AUXILIARY_CAPACITY = 50_000_000 * UNIT
STAKING_MIN_HOLD_SECONDS = 14 * DAY
STAKING_UNLOCK_DELAY_SECONDS = 7 * DAY
STAKING_LONG_TERM_SECONDS = 180 * DAY
STAKING_REWARD_WINDOW_SECONDS = 30 * DAY
STAKING_PENALTY_FEE_BPS = 1_000  # 10%

# Yield multiplier (bps on top of 1.0x)
STAKING_BASE_MULTIPLIER_BPS = 10_000
STAKING_AUXILIARY_BONUS_BPS = 2_500
STAKING_LONG_TERM_BONUS_BPS = 500
STAKING_AUTO_COMPOUND_BONUS_BPS = 500

# Auxiliary (LP) stake counts at half weight for voting
STAKING_AUX_VOTING_WEIGHT_BPS = 5_000

# Reward-per-unit accumulator scale
STAKING_ACCUMULATOR_PRECISION = 10 ** 18

# Descending tier ladder: (threshold, level, name, bonus_bps)
STAKING_TIER_LADDER = (
    (1_000_000 * UNIT, 4, "PLATINUM", 2_000),
    (100_000 * UNIT, 3, "GOLD", 1_000),
    (10_000 * UNIT, 2, "SILVER", 500),
    (1_000 * UNIT, 1, "BRONZE", 200),
    (0, 0, "NONE", 0),
)


# ==================================================================================
# GOVERNANCE PARAMETERS
# ==================================================================================
GOVERNANCE_PROPOSAL_THRESHOLD = 100 * UNIT
GOVERNANCE_QUORUM_PERCENTAGE = 30
GOVERNANCE_VOTING_PERIOD_SECONDS = 7 * DAY
GOVERNANCE_VOTING_DELAY_SECONDS = 1
GOVERNANCE_TIMELOCK_SECONDS = 0

GOVERNANCE_VOTE_AGAINST = 0
GOVERNANCE_VOTE_FOR = 1
GOVERNANCE_VOTE_ABSTAIN = 2


# ==================================================================================
# TREASURY PARAMETERS
# ==================================================================================
TREASURY_MIN_PROJECT_AMOUNT = 1_000 * UNIT
TREASURY_MAX_PROJECT_AMOUNT = 1_000_000 * UNIT
TREASURY_MAX_ACTIVE_PROJECTS = 10
TREASURY_INSURANCE_BPS = 500  # 5%
TREASURY_REPAYMENT_PERIOD_SECONDS = 365 * DAY

# Profit distribution (whole percent, must sum to 100)
TREASURY_PROFIT_TO_STAKERS_PCT = 70
TREASURY_PROFIT_TO_TREASURY_PCT = 10
TREASURY_PROFIT_TO_RESTAKING_PCT = 20


# ==================================================================================
# ELECTION PARAMETERS
# ==================================================================================
ELECTION_NOMINATION_SECONDS = 3 * DAY
ELECTION_CAMPAIGN_SECONDS = 4 * DAY
ELECTION_VOTING_SECONDS = 7 * DAY
ELECTION_TERM_SECONDS = 180 * DAY
ELECTION_MAX_CONCURRENT = 3
ELECTION_MIN_CANDIDATE_BALANCE = 1_000 * UNIT
ELECTION_NOMINATION_STAKE = 500 * UNIT
ELECTION_QUORUM_PERCENTAGE = 30
ELECTION_NEUTRAL_PERFORMANCE_SCORE = 50
ELECTION_MAX_PERFORMANCE_SCORE = 100


# ==================================================================================
# DEPLOYMENT DEFAULTS
# ==================================================================================
DEPLOY_INITIAL_REWARDS = 10_000 * UNIT


# ==================================================================================
# CONFIGURATION WRAPPERS
# ==================================================================================
class ConfigString(str):
    """
    String subclass that stores a default value.
    """
    def __new__(cls, value, default):
        obj = str.__new__(cls, value)
        obj._default = default
        return obj

    def default(self):
        return self._default

class ConfigBool(int):
    """
    Int subclass acting as a boolean that stores a default value.
    """
    def __new__(cls, value, default):
        obj = int.__new__(cls, bool(value))
        obj._default = default
        return obj

    def default(self):
        return self._default

    def __repr__(self):
        return str(bool(self))

    def __str__(self):
        return str(bool(self))

    def __eq__(self, other):
        return bool(self) == other

    __hash__ = int.__hash__


# ==================================================================================
# DYNAMIC CONFIGURATION LOADING
# ==================================================================================
namespace = globals()

def parse_bool(v):
    """
    Convert "True"/"False" (any casing, with surrounding whitespace) into bool.
    Avoids exceptions by only calling ast.literal_eval for known literals.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return v
    if s.casefold() in {"true", "false"}:
        return ast.literal_eval(s.title())
    return v

for key, default_raw in LOGGER_DEFAULTS.items():
    # dotenv_values returns strings or None. None is treated as missing.
    raw = _config.get(key)
    value_raw = default_raw if raw is None else raw

    value = parse_bool(value_raw)
    default_val = parse_bool(default_raw)

    if isinstance(value, bool):
        namespace[key] = ConfigBool(value, default_val)
    else:
        namespace[key] = ConfigString(value_raw, default_val)
