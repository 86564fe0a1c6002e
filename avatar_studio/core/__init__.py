"""
Core modules for Avatar Studio.

This package contains the credit ledger, usage recording, prompt
resolution, pricing and the generation orchestrator.
"""
