from importlib import import_module

__all__ = [
    "OrderExecutor",
    "AutoTrader",
    "create_venue_adapter",
    "load_trading_config",
    "OpenMeteoForecastAdapter",
    "create_batch",
    "refresh_batch",
    "backtest_run",
    "run_strategy_backtest",
]

_LAZY_EXPORTS = {
    "OrderExecutor": ("services.trading.executor", "OrderExecutor"),
    "AutoTrader": ("services.trading.auto_trader", "AutoTrader"),
    "create_venue_adapter": ("services.trading.venue", "create_venue_adapter"),
    "load_trading_config": ("services.trading.config", "load_trading_config"),
    "OpenMeteoForecastAdapter": ("services.weather.adapters.open_meteo", "OpenMeteoForecastAdapter"),
    "create_batch": ("services.weather.strategy_runs", "create_batch"),
    "refresh_batch": ("services.weather.strategy_runs", "refresh_batch"),
    "backtest_run": ("services.backtest.pnl", "backtest_run"),
    "run_strategy_backtest": ("services.backtest.strategy_backtest", "run_strategy_backtest"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
