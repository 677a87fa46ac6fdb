"""Settle detection for bursts of peer notifications."""

from .tracker import SettleMonitor, SettleState, SettleSummary, SettleWindow

__all__ = ["SettleMonitor", "SettleState", "SettleSummary", "SettleWindow"]
