from execution.swap_executor import (
    DryRunRelay,
    SwapExecution,
    SwapExecutor,
    SwapHistory,
    TransactionRelay,
)

__all__ = [
    "DryRunRelay",
    "SwapExecution",
    "SwapExecutor",
    "SwapHistory",
    "TransactionRelay",
]
