"""
Test suite for pod2g_solver.

Run with pytest:
    pytest src/pod2g_solver/tests
"""
