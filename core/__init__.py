"""
Core package for ledger analysis orchestration, flags and result objects.

    from core.ledger_analysis import analyze_ledger
"""
