from qlance.chain.client import BroadcastReceipt, ChainClient, QubicRpcClient
from qlance.chain.scheduler import RetryPolicy, ScheduledTransaction, TransactionScheduler
from qlance.chain.signer import CommandSigner, IdentityDeriver, TransactionSigner

__all__ = [
    "BroadcastReceipt",
    "ChainClient",
    "CommandSigner",
    "IdentityDeriver",
    "QubicRpcClient",
    "RetryPolicy",
    "ScheduledTransaction",
    "TransactionScheduler",
    "TransactionSigner",
]
