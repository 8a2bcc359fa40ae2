"""Behavior resolution layer.

Turns declarative :class:`pyagg.behavior.spec.BehaviorSpec` documents
into runtime predicates, encoders, alerts and aggregators, using either
natively registered factories or scripted dialect hosts.
"""
