"""
Backtesting Package.

Copy-trading backtests: replays a leader's historical trades against a
simulated follower account and reports the resulting performance.

Modules:
- types: tasks, ledger rows, positions, statistics
- config: engine, defaults and database configuration
- state_machine: task lifecycle transitions
- sizing: order sizing, slippage and rounding
- statistics: ledger aggregates
- store: durable store contract
- replay_engine: page loop, fills, settlement and checkpoints
- backtest_service: caller-facing operations
"""

from .backtest_service import BacktestService
from .config import (
    BacktestConfig,
    DatabaseConfig,
    EndpointConfig,
    EngineConfig,
    TaskDefaults,
)
from .replay_engine import ReplayEngine, ReplayState, start_page
from .state_machine import VALID_TRANSITIONS, TransitionGuard, transition
from .statistics import calculate_statistics
from .store import LedgerExposureProvider, TaskStore
from .types import (
    BacktestStatistics,
    BacktestTask,
    BacktestTrade,
    Checkpoint,
    CopyMode,
    CreateTaskRequest,
    LedgerSide,
    PageResult,
    Position,
    TaskListQuery,
    TaskStatus,
    position_key,
)


__all__ = [
    "BacktestService",
    "BacktestConfig",
    "DatabaseConfig",
    "EndpointConfig",
    "EngineConfig",
    "TaskDefaults",
    "ReplayEngine",
    "ReplayState",
    "start_page",
    "VALID_TRANSITIONS",
    "TransitionGuard",
    "transition",
    "calculate_statistics",
    "LedgerExposureProvider",
    "TaskStore",
    "BacktestStatistics",
    "BacktestTask",
    "BacktestTrade",
    "Checkpoint",
    "CopyMode",
    "CreateTaskRequest",
    "LedgerSide",
    "PageResult",
    "Position",
    "TaskListQuery",
    "TaskStatus",
    "position_key",
]
