"""Target environments the executor can drive.

- memory.InMemoryEnvironment: in-process tester, used for local runs and tests
- rpc.RpcEnvironment: deployed tester contract over JSON-RPC
"""

from v4compat.environments.base import Operation, ProbeOutcome, Receipt, TargetEnvironment

__all__ = [
    "Operation",
    "ProbeOutcome",
    "Receipt",
    "TargetEnvironment",
]
