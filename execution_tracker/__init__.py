"""Dispatch test runs to CI and reconcile their results into test case records."""
