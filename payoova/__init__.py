"""Payoova custodial wallet backend."""
