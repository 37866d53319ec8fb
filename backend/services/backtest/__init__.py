"""Run-level P&L evaluation and offline strategy backtests."""
