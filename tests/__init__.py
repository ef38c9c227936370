"""
Rutt Planner test suite.

Unit tests live in tests/unit and never touch a live database, Redis or
routing server: HTTP and Redis clients are replaced with mocks, and the
repository is mocked at the service boundary.

Running Tests:
    # All unit tests
    pytest tests/unit -v

    # One module
    pytest tests/unit/test_feasibility.py -v
"""
