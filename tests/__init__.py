# ShopChain Test Suite
"""
Test suite including:
- Unit tests (hashing, pool, chain, miner, service)
- Integration tests (end-to-end purchase flow, concurrency, persistence)
- Security tests (tampering, invalid inputs)

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
