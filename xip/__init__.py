"""
XIP - Cross-chain Intent Protocol

Users lock tokens on an origin chain and state what they expect to receive
on a destination chain. Solvers bid for the right to fill the intent,
deliver on the destination chain, and are paid out on the origin chain once
a relayer has verified the delivery.
"""
