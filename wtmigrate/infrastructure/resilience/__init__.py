"""Resilience Implementations.

Contains the bounded-concurrency work queue, the retry policy and the call
dispatcher that combines them for remote calls.
Bounded Context: API Resilience
"""
