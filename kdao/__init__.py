"""
KDAO Package

Staking, governance, treasury and election engines for a token-holding
community, sharing one execution host.

Engines are lazily loaded. For direct access, import from submodules:

    from kdao.host import Host
    from kdao.staking import StakingEngine
    from kdao.deployment import deploy_dao
"""

__version__ = "2.0.0"

_LAZY = {
    "Host": ".host",
    "StakingEngine": ".staking",
    "GovernanceEngine": ".governance",
    "TreasuryEngine": ".treasury",
    "ElectionEngine": ".elections",
    "deploy_dao": ".deployment",
    "DAOSystem": ".deployment",
    "DAOConfig": ".config",
    "KDAOError": ".exceptions",
}


def __getattr__(name):
    """Lazy module loading."""
    if name in _LAZY:
        import importlib
        module = importlib.import_module(_LAZY[name], __name__)
        return getattr(module, name)
    raise AttributeError(f"module 'kdao' has no attribute {name!r}")


__all__ = list(_LAZY)
