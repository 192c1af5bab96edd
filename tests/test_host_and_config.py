"""
Host, Capabilities & Configuration Test Suite

Coverage:
  - Host transactions: rollback, nested join, reentrancy guard
  - Table store, RoleRegistry, ManualClock, InMemoryLedger
  - DAOConfig from TOML with environment overrides and validation
  - Logger sanitising and singleton
"""

import os
import sys
import time

import pytest

# ── Path setup ────────────────────────────────────────────────────────
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from kdao.access import RoleRegistry
from kdao.clock import Clock, ManualClock, SystemClock
from kdao.config import (
    DAOConfig,
    ElectionConfig,
    GovernanceConfig,
    StakingConfig,
    TreasuryConfig,
    load_config,
)
from kdao.constants import GOVERNANCE_ROLE, UNIT
from kdao.exceptions import (
    ConfigurationError,
    InvalidInputError,
    KDAOError,
    ReentrancyError,
    TransferFailedError,
    UnauthorizedError,
)
from kdao.host import Engine, Host, atomic
from kdao.ledger import InMemoryLedger
from kdao.logger import LogManager, TerminalSafeFormatter, get_logger
from kdao.store import Table


# ══════════════════════════════════════════════════════════════════════
#  HELPERS
# ══════════════════════════════════════════════════════════════════════

ADMIN = "0xKD" + "AD" * 20
ALICE = "0xKD" + "A1" * 20
BOB = "0xKD" + "B0" * 20


class Counter(Engine):
    """Minimal engine used to exercise the host."""

    _journaled = ("value", "log")

    def __init__(self, host, account, peer=None):
        super().__init__(host, account)
        self.value = 0
        self.log = []
        self.peer = peer

    @atomic
    def bump(self, by=1, fail=False):
        self.value += by
        self.log.append(by)
        if fail:
            raise InvalidInputError("boom")

    @atomic
    def bump_both(self, fail_peer=False):
        self.value += 10
        self.peer.bump(5, fail=fail_peer)

    @atomic
    def recurse(self):
        self.recurse()

    @atomic
    def pay(self, recipient, amount):
        self.value += 1
        self._pay(recipient, amount)


def make_host(balances=None):
    ledger = InMemoryLedger(initial_balances=balances or {})
    host = Host(ManualClock(), ledger, RoleRegistry(admin=ADMIN))
    return host, ledger


# ══════════════════════════════════════════════════════════════════════
#  HOST
# ══════════════════════════════════════════════════════════════════════


class TestTransactions:

    def test_commit(self):
        host, _ = make_host()
        c = Counter(host, "counter")
        c.bump(3)
        assert c.value == 3
        assert host.to_dict()["committed"] == 1

    def test_failure_rolls_back(self):
        host, _ = make_host()
        c = Counter(host, "counter")
        c.bump(3)
        with pytest.raises(InvalidInputError):
            c.bump(4, fail=True)
        assert c.value == 3
        assert c.log == [3]
        assert host.to_dict()["reverted"] == 1
        assert not host.in_transaction

    def test_nested_call_joins_outer(self):
        host, _ = make_host()
        inner = Counter(host, "inner")
        outer = Counter(host, "outer", peer=inner)
        outer.bump_both()
        assert (outer.value, inner.value) == (10, 5)
        with pytest.raises(InvalidInputError):
            outer.bump_both(fail_peer=True)
        # Both engines restored, not just the one that raised
        assert (outer.value, inner.value) == (10, 5)

    def test_ledger_is_journaled(self):
        host, ledger = make_host({"counter": 100})
        c = Counter(host, "counter")
        c.pay(ALICE, 40)
        assert ledger.balance_of(ALICE) == 40
        with pytest.raises(TransferFailedError):
            c.pay(ALICE, 1_000)
        assert ledger.balance_of("counter") == 60
        assert c.value == 1

    def test_reentrancy_rejected(self):
        host, _ = make_host()
        c = Counter(host, "counter")
        with pytest.raises(ReentrancyError):
            c.recurse()
        # Guard released after the failure
        c.bump()
        assert c.value == 1

    def test_engine_requires_account(self):
        host, _ = make_host()
        with pytest.raises(InvalidInputError):
            Counter(host, "")

    def test_require_role(self):
        host, _ = make_host()
        host.access.grant_role(ADMIN, GOVERNANCE_ROLE, ALICE)
        host.require_role(GOVERNANCE_ROLE, ALICE)
        with pytest.raises(UnauthorizedError):
            host.require_role(GOVERNANCE_ROLE, BOB)


# ══════════════════════════════════════════════════════════════════════
#  CAPABILITIES
# ══════════════════════════════════════════════════════════════════════


class TestTable:

    def test_insert_assigns_sequential_ids(self):
        t = Table("thing")
        a = t.insert(lambda i: {"id": i})
        b = t.insert(lambda i: {"id": i})
        assert (a["id"], b["id"]) == (1, 2)
        assert len(t) == 2 and 2 in t
        assert t.next_id == 3

    def test_indexes(self):
        t = Table("thing")
        row = t.insert(lambda i: {"id": i})
        t.index("owner", ALICE, row["id"])
        t.index("owner", ALICE, row["id"])
        assert t.lookup("owner", ALICE) == [row]
        assert t.lookup_one("owner", BOB) is None
        t.unindex("owner", ALICE, row["id"])
        assert t.keys("owner") == []

    def test_unknown_row(self):
        with pytest.raises(InvalidInputError, match="Unknown thing #9"):
            Table("thing").get_or_raise(9)


class TestRoleRegistry:

    def test_only_admin_grants(self):
        roles = RoleRegistry(admin=ADMIN)
        with pytest.raises(UnauthorizedError):
            roles.grant_role(ALICE, GOVERNANCE_ROLE, ALICE)
        roles.grant_role(ADMIN, GOVERNANCE_ROLE, ALICE)
        assert roles.has_role(GOVERNANCE_ROLE, ALICE)
        roles.revoke_role(ADMIN, GOVERNANCE_ROLE, ALICE)
        assert roles.members(GOVERNANCE_ROLE) == set()


class TestClock:

    def test_manual_clock(self):
        clock = ManualClock(start=100)
        assert clock.advance(50) == 150
        assert clock.set(200) == 200
        with pytest.raises(InvalidInputError):
            clock.set(199)
        with pytest.raises(InvalidInputError):
            clock.advance(-1)

    def test_system_clock_is_a_clock(self, monkeypatch):
        clock = SystemClock()
        assert isinstance(clock, Clock)
        monkeypatch.setattr(time, "time", lambda: 2_000.0)
        assert clock.now() == 2_000
        monkeypatch.setattr(time, "time", lambda: 1_000.0)
        assert clock.now() == 2_000


class TestPackage:

    def test_lazy_exports(self):
        import kdao
        assert kdao.StakingEngine.__name__ == "StakingEngine"
        assert kdao.deploy_dao.__name__ == "deploy_dao"
        with pytest.raises(AttributeError):
            kdao.NotAThing


class TestLedger:

    def test_transfer_from_respects_allowance(self):
        ledger = InMemoryLedger(initial_balances={ALICE: 100})
        assert not ledger.transfer_from(BOB, ALICE, BOB, 10)
        ledger.approve(ALICE, BOB, 30)
        assert ledger.transfer_from(BOB, ALICE, BOB, 30)
        assert ledger.allowance(ALICE, BOB) == 0
        assert ledger.balance_of(BOB) == 30

    def test_frozen_rejects(self):
        ledger = InMemoryLedger(initial_balances={ALICE: 100})
        ledger.freeze()
        assert not ledger.transfer(ALICE, BOB, 1)
        ledger.unfreeze()
        assert ledger.transfer(ALICE, BOB, 1)

    def test_snapshot_restore(self):
        ledger = InMemoryLedger(initial_balances={ALICE: 100})
        snap = ledger.snapshot()
        ledger.transfer(ALICE, BOB, 60)
        ledger.mint(BOB, 5)
        ledger.restore(snap)
        assert ledger.balance_of(BOB) == 0
        assert ledger.total_supply() == 100
        assert ledger.events == []


# ══════════════════════════════════════════════════════════════════════
#  CONFIGURATION
# ══════════════════════════════════════════════════════════════════════


CONFIG_TOML = """
[dao]
initial_rewards = 0

[dao.staking]
min_stake = 50_000_000_000_000_000_000

[dao.governance]
quorum_percentage = 40
timelock_seconds = 86400
bogus = 1

[dao.treasury]
max_active_projects = 3
"""


class TestConfig:

    def test_defaults_validate(self):
        assert DAOConfig().validate()

    def test_from_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(CONFIG_TOML)
        config = load_config(str(path))
        assert config.staking.min_stake == 50 * UNIT
        assert config.governance.quorum_percentage == 40
        assert config.governance.timelock_seconds == 86400
        assert config.treasury.max_active_projects == 3
        assert config.initial_rewards == 0
        # Untouched sections keep defaults
        assert config.elections == ElectionConfig()

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text(CONFIG_TOML)
        monkeypatch.setenv("KDAO_GOVERNANCE_QUORUM_PERCENTAGE", "25")
        monkeypatch.setenv("KDAO_ELECTIONS_TERM_SECONDS", "1_000")
        config = load_config(str(path))
        assert config.governance.quorum_percentage == 25
        assert config.elections.term_seconds == 1000

    def test_bad_env_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("KDAO_TREASURY_INSURANCE_BPS", "lots")
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "missing.toml"))

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "missing.toml"))
        assert config.to_dict() == DAOConfig().to_dict()

    @pytest.mark.parametrize("section", [
        StakingConfig(min_stake=0),
        StakingConfig(min_auxiliary_stake=0),
        StakingConfig(auxiliary_capacity=1),
        StakingConfig(tier_ladder=[(100, 1, "BRONZE", 200)]),
        GovernanceConfig(quorum_percentage=0),
        GovernanceConfig(voting_delay_seconds=0),
        TreasuryConfig(profit_to_stakers_pct=80),
        TreasuryConfig(insurance_bps=10_000),
        ElectionConfig(voting_seconds=0),
    ])
    def test_invalid_sections(self, section):
        with pytest.raises(ConfigurationError):
            section.validate()

    def test_configuration_error_is_kdao_error(self):
        assert issubclass(ConfigurationError, KDAOError)


# ══════════════════════════════════════════════════════════════════════
#  LOGGING
# ══════════════════════════════════════════════════════════════════════


class TestLogging:

    def test_singleton(self):
        assert LogManager() is LogManager()

    def test_sanitize_strips_escapes(self):
        dirty = "\x1b[31mProposal\x1b[0m #1\x00 passed\x07"
        assert TerminalSafeFormatter.sanitize(dirty) == "Proposal #1 passed"

    def test_get_logger_configures(self):
        logger = get_logger("kdao.tests")
        assert logger.name == "kdao.tests"
        assert LogManager().is_configured

    def test_format_validation_falls_back(self):
        default = LogManager.validate_log_format("")
        assert LogManager.validate_log_format("%(message)s") == "%(message)s"
        assert LogManager.validate_log_format("%(nope)s") == default
        assert LogManager.validate_date_format("no-specifiers") != "no-specifiers"
