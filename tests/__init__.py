"""PortLedger Test Suite

Test modules:
    test_port_parser        — Unit tests for core/port_parser.py (all edge cases)
    test_observation_parser — nmap XML → Snapshot, failure taxonomy
    test_diff               — change classification and latest-snapshot tie-breaks
    test_database           — history store, atomic persist, migrations
                              (on-disk SQLite via pytest tmp_path fixture)
    test_reconciler         — end-to-end pipeline with an in-process prober
    test_probe              — nmap argv and subprocess handling (fake binaries)
    test_api                — Flask endpoints via the test client
    test_config             — YAML config and overrides
    test_layering           — Static import analysis enforcing architectural
                              layering rules (utils / core / database / api)

Run all tests:
    pytest tests/ -v

Run standalone (no pytest):
    python3 tests/run_all.py
    python3 tests/run_all.py -v       # verbose
"""
